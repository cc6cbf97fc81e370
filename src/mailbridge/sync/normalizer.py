"""Turn parsed mail into canonical ``UnifiedMessage`` records."""

from __future__ import annotations

from datetime import datetime

import structlog

from mailbridge.mail.parsing import ParsedMail
from mailbridge.models import (
    AttachmentInfo,
    ConnectedAccount,
    NO_SUBJECT,
    EmailAddress,
    MessageStatus,
    UnifiedMessage,
    new_id,
    utc_now,
)

logger = structlog.get_logger()

UNKNOWN_SENDER = EmailAddress(address="unknown@unknown.com")

def resolve_thread_id(
    provider_message_id: str, in_reply_to: str | None, references: list[str]
) -> str:
    """Pick the thread root: first reference, else In-Reply-To, else the message itself."""

    if references:
        return references[0]
    if in_reply_to:
        return in_reply_to
    return provider_message_id


def normalize_message(
    parsed: ParsedMail,
    account: ConnectedAccount,
    *,
    uid: int | None = None,
    received_at: datetime | None = None,
    is_read: bool = False,
) -> UnifiedMessage | None:
    """Convert a parsed message to a UnifiedMessage.

    Args:
        parsed: Output of ``parse_raw_message``.
        account: Account the message was fetched for.
        uid: Mailbox UID, when known.
        received_at: Receipt time; also the fallback for a missing Date header.
        is_read: Whether the server reports the message as seen.

    Returns:
        The normalized message, or None when there is no Message-ID to
        deduplicate or thread on.
    """

    if not parsed.message_id:
        logger.debug(
            "message_skipped_missing_message_id",
            account_id=account.id,
            uid=uid,
            subject=parsed.subject,
        )
        return None

    received = received_at or utc_now()
    message_id = new_id()
    references = list(parsed.references)

    attachments = [
        AttachmentInfo(
            id=f"{message_id}_att_{i}",
            message_id=message_id,
            filename=att.filename or f"attachment_{i}",
            mime_type=att.content_type,
            size=att.size,
            content_id=att.content_id,
            is_inline=att.is_inline,
        )
        for i, att in enumerate(parsed.attachments)
    ]

    return UnifiedMessage(
        id=message_id,
        account_id=account.id,
        client_id=account.client_id,
        provider_message_id=parsed.message_id,
        thread_id=resolve_thread_id(parsed.message_id, parsed.in_reply_to, references),
        in_reply_to=parsed.in_reply_to,
        references=references,
        sender=parsed.sender or UNKNOWN_SENDER,
        to=parsed.to,
        cc=parsed.cc,
        bcc=parsed.bcc,
        reply_to=parsed.reply_to,
        subject=parsed.subject or NO_SUBJECT,
        body_text=parsed.text or None,
        body_html=parsed.html or None,
        date=parsed.date or received,
        received_at=received,
        is_read=is_read,
        is_outgoing=False,
        status=MessageStatus.READ if is_read else MessageStatus.NEW,
        has_attachments=bool(attachments),
        attachments=attachments,
        synced_at=received,
        provider_uid=uid,
    )
