"""Records exchanged with the mailbox transport."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from mailbridge.models.message import EmailAddress


class FetchRequest(BaseModel):
    """What to fetch: either everything after a UID, or everything since a date."""

    after_uid: int | None = Field(default=None, description="Fetch UIDs strictly greater than this")
    since: datetime | None = Field(default=None, description="Fetch messages received on/after this")
    max_count: int = Field(default=5, ge=1, description="Maximum number of messages to return")

    @property
    def is_incremental(self) -> bool:
        return self.after_uid is not None


class RawMailItem(BaseModel):
    """One message as delivered by the transport."""

    uid: int = Field(description="Mailbox-native ordinal (IMAP UID)")
    source: bytes = Field(description="Full RFC 5322 message source")
    flags: list[str] = Field(default_factory=list, description="Server flags, e.g. \\Seen")

    @property
    def is_seen(self) -> bool:
        return any(flag.lower() == "\\seen" for flag in self.flags)


class OutgoingMail(BaseModel):
    """A message handed to the transport for delivery."""

    message_id: str = Field(description="Message-ID to put on the outgoing message")
    sender: EmailAddress
    to: list[EmailAddress] = Field(default_factory=list)
    cc: list[EmailAddress] = Field(default_factory=list)
    bcc: list[EmailAddress] = Field(default_factory=list)
    reply_to: EmailAddress | None = None
    subject: str = ""
    body_text: str | None = None
    body_html: str | None = None
    in_reply_to: str | None = None
    references: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _has_recipient(self) -> "OutgoingMail":
        if not (self.to or self.cc or self.bcc):
            raise ValueError("outgoing mail needs at least one recipient")
        return self

    def recipients(self) -> list[str]:
        return [a.address for a in (*self.to, *self.cc, *self.bcc)]


class DeliveryConfirmation(BaseModel):
    """Transport acknowledgement for a sent message."""

    message_id: str = Field(description="Message-ID of the sent message")
    accepted: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)
