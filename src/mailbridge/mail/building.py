"""Build outgoing RFC 5322 messages."""

from __future__ import annotations

from datetime import datetime
from email.message import EmailMessage
from email.utils import format_datetime, make_msgid

from mailbridge.models import OutgoingMail, utc_now


def generate_message_id(address: str) -> str:
    """Create a Message-ID using the domain of ``address``."""

    domain = address.rsplit("@", 1)[-1] if "@" in address else None
    return make_msgid(domain=domain or None)


def build_mime_message(mail: OutgoingMail, date: datetime | None = None) -> EmailMessage:
    """Render an OutgoingMail with threading headers.

    Bcc recipients are deliberately left out of the headers; the transport
    passes them as envelope recipients only.
    """

    msg = EmailMessage()
    msg["From"] = mail.sender.formatted()
    if mail.to:
        msg["To"] = ", ".join(a.formatted() for a in mail.to)
    if mail.cc:
        msg["Cc"] = ", ".join(a.formatted() for a in mail.cc)
    if mail.reply_to:
        msg["Reply-To"] = mail.reply_to.formatted()
    msg["Subject"] = mail.subject
    msg["Date"] = format_datetime(date or utc_now())
    msg["Message-ID"] = mail.message_id

    if mail.in_reply_to:
        msg["In-Reply-To"] = mail.in_reply_to
    if mail.references:
        msg["References"] = " ".join(mail.references)

    msg.set_content(mail.body_text or "")
    if mail.body_html:
        msg.add_alternative(mail.body_html, subtype="html")
    return msg
