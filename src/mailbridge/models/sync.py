"""Sync cursor and sync result models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from mailbridge.models.enums import SyncErrorKind, SyncOutcome


class SyncState(BaseModel):
    """Per-account bookmark used to resume incremental sync."""

    account_id: str = Field(description="Account this cursor belongs to")
    last_uid: int | None = Field(
        default=None, description="Highest mailbox UID successfully processed"
    )
    last_sync_at: datetime | None = Field(default=None, description="Time of the last successful sync")


class SyncResult(BaseModel):
    """Result of syncing a single account."""

    account_id: str
    success: bool
    new_message_count: int = Field(default=0, ge=0)
    error: str | None = None
    error_kind: SyncErrorKind | None = None
    retryable: bool = False

    @property
    def outcome(self) -> SyncOutcome:
        if self.success:
            return SyncOutcome.INGESTED if self.new_message_count else SyncOutcome.NOTHING_NEW
        if self.error_kind in (SyncErrorKind.AUTHENTICATION, SyncErrorKind.CONNECTION):
            return SyncOutcome.UNREACHABLE
        return SyncOutcome.FAILED


class SyncSummary(BaseModel):
    """Aggregated results of syncing several accounts."""

    results: list[SyncResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def new_messages(self) -> int:
        return sum(r.new_message_count for r in self.results)
