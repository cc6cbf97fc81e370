"""Conversation aggregate model."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from mailbridge.models.enums import ConversationStatus
from mailbridge.models.message import NO_SUBJECT, EmailAddress, UnifiedMessage, new_id, utc_now


class Conversation(BaseModel):
    """Messages sharing a thread, with rolled-up counts and participants."""

    id: str = Field(default_factory=new_id, description="Internal conversation id")
    account_id: str = Field(description="Owning account")
    client_id: str = Field(description="Owning tenant")

    thread_ids: list[str] = Field(
        default_factory=list,
        description="Every Message-ID known to belong to this conversation",
    )

    subject: str = Field(default=NO_SUBJECT, description="Normalized subject")
    snippet: str = Field(default="", description="Preview of the latest message")
    participants: list[EmailAddress] = Field(
        default_factory=list, description="Participants, unique by lowercased address"
    )
    last_sender: EmailAddress | None = Field(default=None, description="Sender of the latest message")

    status: ConversationStatus = Field(default=ConversationStatus.OPEN)
    message_count: int = Field(default=0, ge=0)
    unread_count: int = Field(default=0, ge=0)

    last_message_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    closed_at: datetime | None = Field(default=None)


class ConversationFilters(BaseModel):
    """Query filters for listing conversations."""

    account_id: str | None = None
    client_id: str | None = None
    status: ConversationStatus | None = None
    search: str | None = Field(
        default=None, description="Case-insensitive substring match on subject and snippet"
    )
    limit: int = Field(default=50, ge=1)
    offset: int = Field(default=0, ge=0)


class ConversationWithMessages(BaseModel):
    """A conversation together with its messages, oldest first."""

    conversation: Conversation
    messages: list[UnifiedMessage] = Field(default_factory=list)
