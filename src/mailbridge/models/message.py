"""Normalized message record and its envelope parts."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field

from mailbridge.models.enums import MessageStatus

NO_SUBJECT = "(No Subject)"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class EmailAddress(BaseModel):
    """A mailbox address with an optional display name."""

    address: str = Field(description="Email address")
    name: str | None = Field(default=None, description="Display name")

    @property
    def key(self) -> str:
        """Case-insensitive identity used for participant de-duplication."""
        return self.address.strip().lower()

    def formatted(self) -> str:
        if self.name:
            return f'"{self.name}" <{self.address}>'
        return self.address


class AttachmentInfo(BaseModel):
    """Attachment metadata. The content itself is never stored here."""

    id: str = Field(description="Attachment id, unique within the store")
    message_id: str = Field(description="Internal id of the parent message")
    filename: str = Field(description="File name from the MIME part")
    mime_type: str = Field(default="application/octet-stream", description="Content type")
    size: int = Field(default=0, ge=0, description="Decoded size in bytes")
    content_id: str | None = Field(default=None, description="Content-ID for inline parts")
    is_inline: bool = Field(default=False, description="Whether the part is inline")


class UnifiedMessage(BaseModel):
    """One normalized email, incoming or outgoing."""

    id: str = Field(default_factory=new_id, description="Internal message id")
    account_id: str = Field(description="Owning account")
    client_id: str = Field(description="Owning tenant (denormalized from the account)")

    provider_message_id: str = Field(description="Message-ID header, unique per account")

    thread_id: str = Field(description="Derived thread root Message-ID")
    in_reply_to: str | None = Field(default=None, description="In-Reply-To Message-ID")
    references: list[str] = Field(
        default_factory=list, description="References chain, oldest first"
    )

    sender: EmailAddress = Field(description="From header")
    to: list[EmailAddress] = Field(default_factory=list, description="To recipients")
    cc: list[EmailAddress] = Field(default_factory=list, description="Cc recipients")
    bcc: list[EmailAddress] = Field(default_factory=list, description="Bcc recipients")
    reply_to: EmailAddress | None = Field(default=None, description="Reply-To header")

    subject: str = Field(default=NO_SUBJECT, description="Subject header")
    body_text: str | None = Field(default=None, description="Plain-text body")
    body_html: str | None = Field(default=None, description="HTML body")

    date: datetime = Field(description="Sent date, or receipt time when unknown")
    received_at: datetime = Field(default_factory=utc_now, description="Receipt time")
    is_read: bool = Field(default=False, description="Whether the message has been read")
    is_outgoing: bool = Field(default=False, description="True for messages we sent")
    status: MessageStatus = Field(default=MessageStatus.NEW, description="Lifecycle status")

    has_attachments: bool = Field(default=False, description="Whether attachments exist")
    attachments: list[AttachmentInfo] = Field(
        default_factory=list, description="Attachment metadata"
    )

    synced_at: datetime = Field(default_factory=utc_now, description="When the record was stored")
    provider_uid: int | None = Field(default=None, description="Mailbox UID of the message")
    conversation_id: str | None = Field(default=None, description="Owning conversation")

    def participants(self) -> list[EmailAddress]:
        """Return from + to + cc, in that order."""
        return [self.sender, *self.to, *self.cc]


class MessageFilters(BaseModel):
    """Query filters for listing messages."""

    account_id: str | None = None
    client_id: str | None = None
    conversation_id: str | None = None
    thread_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    is_read: bool | None = None
    is_outgoing: bool | None = None
    has_attachments: bool | None = None
    limit: int | None = Field(default=50, ge=1)
    offset: int = Field(default=0, ge=0)
