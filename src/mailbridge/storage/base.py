"""Persistent store interface consumed by the engine."""

from __future__ import annotations

from typing import Any, Protocol

from mailbridge.models import (
    ConnectedAccount,
    Conversation,
    ConversationFilters,
    MessageFilters,
    SyncState,
    UnifiedMessage,
)


class MailStore(Protocol):
    """Storage operations for accounts, messages, conversations and sync cursors.

    Implementations must make each call atomic for the record it touches.
    Saving a message whose ``(account_id, provider_message_id)`` already
    exists is a no-op.
    """

    # Accounts
    def get_account(self, account_id: str) -> ConnectedAccount | None: ...

    def list_accounts(self, client_id: str | None = None) -> list[ConnectedAccount]: ...

    def save_account(self, account: ConnectedAccount) -> None: ...

    def update_account(self, account_id: str, updates: dict[str, Any]) -> ConnectedAccount | None: ...

    # Messages
    def get_message(self, message_id: str) -> UnifiedMessage | None: ...

    def get_message_by_provider_id(
        self, account_id: str, provider_message_id: str
    ) -> UnifiedMessage | None: ...

    def save_message(self, message: UnifiedMessage) -> bool: ...

    def save_messages(self, messages: list[UnifiedMessage]) -> list[str]: ...

    def update_message(self, message_id: str, updates: dict[str, Any]) -> UnifiedMessage | None: ...

    def delete_message(self, message_id: str) -> bool: ...

    def list_messages(self, filters: MessageFilters) -> list[UnifiedMessage]: ...

    def count_messages(self, filters: MessageFilters) -> int: ...

    def get_conversation_messages(self, conversation_id: str) -> list[UnifiedMessage]: ...

    # Conversations
    def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    def get_conversation_by_thread_id(self, account_id: str, thread_id: str) -> Conversation | None: ...

    def save_conversation(self, conversation: Conversation) -> None: ...

    def update_conversation(
        self, conversation_id: str, updates: dict[str, Any]
    ) -> Conversation | None: ...

    def delete_conversation(self, conversation_id: str) -> bool: ...

    def list_conversations(self, filters: ConversationFilters) -> list[Conversation]: ...

    def count_conversations(self, filters: ConversationFilters) -> int: ...

    # Sync state
    def get_sync_state(self, account_id: str) -> SyncState | None: ...

    def save_sync_state(self, state: SyncState) -> None: ...

    def clear_sync_state(self, account_id: str) -> None: ...
