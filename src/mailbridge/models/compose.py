"""Reply and compose request/result models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from mailbridge.models.message import EmailAddress, UnifiedMessage


class ReplyContent(BaseModel):
    """New content for a reply or a fresh message."""

    to: list[EmailAddress] = Field(
        default_factory=list,
        description="Recipients; replies default to the target's Reply-To or From",
    )
    cc: list[EmailAddress] = Field(default_factory=list)
    bcc: list[EmailAddress] = Field(default_factory=list)
    subject: str | None = Field(default=None, description="Subject override")
    body_text: str | None = None
    body_html: str | None = None


class SentMessage(BaseModel):
    """A message the transport accepted, as stored."""

    message: UnifiedMessage
    conversation_id: str

    @property
    def sent_message_id(self) -> str:
        return self.message.provider_message_id


class ReplyResult(BaseModel):
    """Result of a send, as reported to callers."""

    success: bool
    message_id: str | None = Field(default=None, description="Internal id of the stored message")
    sent_message_id: str | None = Field(default=None, description="Message-ID of the sent message")
    error: str | None = None
