"""Helpers for parsing raw RFC 5322 messages into an intermediate record."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import policy
from email.header import decode_header, make_header
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from mailbridge.exceptions import MessageParseError
from mailbridge.models import EmailAddress

_MSGID_RE = re.compile(r"<[^<>\s]+>")
_FOLD_RE = re.compile(r"\r?\n[ \t]+")


@dataclass
class ParsedAttachment:
    filename: str | None
    content_type: str
    size: int
    content_id: str | None
    is_inline: bool


@dataclass
class ParsedMail:
    """Headers, bodies and attachment metadata of one raw message."""

    message_id: str | None
    in_reply_to: str | None
    references: list[str]
    sender: EmailAddress | None
    to: list[EmailAddress]
    cc: list[EmailAddress]
    bcc: list[EmailAddress]
    reply_to: EmailAddress | None
    subject: str | None
    date: datetime | None
    text: str | None
    html: str | None
    attachments: list[ParsedAttachment] = field(default_factory=list)


def _decode(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return str(make_header(decode_header(str(value)))).strip()
    except (UnicodeError, LookupError, ValueError):
        return str(value).strip()


def _raw_header(msg: EmailMessage, name: str) -> str | None:
    # Read undecoded values so malformed headers don't raise from the policy parser.
    for key, value in msg.raw_items():
        if key.lower() == name:
            return _FOLD_RE.sub(" ", str(value))
    return None


def parse_message_ids(value: str | None) -> list[str]:
    """Extract angle-bracketed Message-IDs in order, falling back to whitespace tokens."""

    if not value:
        return []
    found = _MSGID_RE.findall(value)
    if found:
        return found
    # Bracket-only tokens such as "<>" carry no identity.
    return [token for token in value.split() if token.strip("<>")]


def _parse_address_list(value: str | None) -> list[EmailAddress]:
    if not value:
        return []
    result: list[EmailAddress] = []
    # getaddresses returns list[(name, addr)]
    for name, addr in getaddresses([value]):
        if not addr:
            continue
        result.append(EmailAddress(address=addr, name=_decode(name) or None))
    return result


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, OverflowError, IndexError):
        return None
    if parsed.tzinfo is None:
        # "-0000" means unknown zone; treat it as UTC.
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _part_text(part: EmailMessage) -> str | None:
    try:
        content = part.get_content()
    except (LookupError, UnicodeError, AssertionError, KeyError):
        payload = part.get_payload(decode=True) or b""
        content = payload.decode("utf-8", errors="replace")
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return content if isinstance(content, str) else None


def _collect_parts(msg: EmailMessage) -> tuple[str | None, str | None, list[ParsedAttachment]]:
    text: str | None = None
    html: str | None = None
    attachments: list[ParsedAttachment] = []

    for part in msg.walk():
        if part.is_multipart():
            continue

        disposition = part.get_content_disposition()
        content_type = part.get_content_type()
        filename = part.get_filename()

        if disposition == "attachment" or (filename and disposition != "inline"):
            payload = part.get_payload(decode=True) or b""
            attachments.append(
                ParsedAttachment(
                    filename=_decode(filename),
                    content_type=content_type,
                    size=len(payload),
                    content_id=(part.get("Content-ID") or "").strip("<> ") or None,
                    is_inline=False,
                )
            )
            continue

        if content_type == "text/plain" and text is None:
            text = _part_text(part)
        elif content_type == "text/html" and html is None:
            html = _part_text(part)
        elif disposition == "inline" or part.get("Content-ID"):
            payload = part.get_payload(decode=True) or b""
            attachments.append(
                ParsedAttachment(
                    filename=_decode(filename),
                    content_type=content_type,
                    size=len(payload),
                    content_id=(part.get("Content-ID") or "").strip("<> ") or None,
                    is_inline=True,
                )
            )

    return text, html, attachments


def parse_raw_message(source: bytes) -> ParsedMail:
    """Parse a raw message.

    Args:
        source: Full RFC 5322 message bytes.

    Returns:
        ParsedMail: Decoded headers, bodies and attachment metadata.

    Raises:
        MessageParseError: If the bytes cannot be parsed as a message at all.
    """

    if not source:
        raise MessageParseError("empty message source")

    try:
        msg = BytesParser(policy=policy.default).parsebytes(source)
    except Exception as exc:  # noqa: BLE001
        raise MessageParseError(str(exc)) from exc

    message_ids = parse_message_ids(_raw_header(msg, "message-id"))
    in_reply_to = parse_message_ids(_raw_header(msg, "in-reply-to"))

    senders = _parse_address_list(_raw_header(msg, "from"))
    reply_tos = _parse_address_list(_raw_header(msg, "reply-to"))

    try:
        text, html, attachments = _collect_parts(msg)
    except Exception as exc:  # noqa: BLE001
        raise MessageParseError(f"failed to read message body: {exc}") from exc

    return ParsedMail(
        message_id=message_ids[0] if message_ids else None,
        in_reply_to=in_reply_to[0] if in_reply_to else None,
        references=parse_message_ids(_raw_header(msg, "references")),
        sender=senders[0] if senders else None,
        to=_parse_address_list(_raw_header(msg, "to")),
        cc=_parse_address_list(_raw_header(msg, "cc")),
        bcc=_parse_address_list(_raw_header(msg, "bcc")),
        reply_to=reply_tos[0] if reply_tos else None,
        subject=_decode(_raw_header(msg, "subject")),
        date=_parse_date(_raw_header(msg, "date")),
        text=text,
        html=html,
        attachments=attachments,
    )
