"""Message retrieval and lifecycle transitions."""

from __future__ import annotations

import structlog

from mailbridge.context import EngineContext
from mailbridge.conversations.service import ConversationService
from mailbridge.exceptions import MessageNotFoundError
from mailbridge.models import MessageFilters, MessageStatus, UnifiedMessage

logger = structlog.get_logger()


class MessageService:
    """Read, list and transition messages while keeping conversations consistent."""

    def __init__(
        self, context: EngineContext, conversations: ConversationService | None = None
    ) -> None:
        self.store = context.store
        self.conversations = conversations or ConversationService(context)

    def get_message(self, message_id: str) -> UnifiedMessage | None:
        return self.store.get_message(message_id)

    def get_message_by_provider_id(
        self, account_id: str, provider_message_id: str
    ) -> UnifiedMessage | None:
        return self.store.get_message_by_provider_id(account_id, provider_message_id)

    def list_messages(self, filters: MessageFilters) -> list[UnifiedMessage]:
        return self.store.list_messages(filters)

    def count_messages(self, filters: MessageFilters) -> int:
        return self.store.count_messages(filters)

    def get_thread(self, thread_id: str, account_id: str | None = None) -> list[UnifiedMessage]:
        """Return messages sharing a derived thread id, oldest first."""

        messages = self.store.list_messages(
            MessageFilters(thread_id=thread_id, account_id=account_id, limit=100)
        )
        return sorted(messages, key=lambda m: m.date)

    def mark_as_read(self, message_id: str) -> UnifiedMessage:
        message = self._require(message_id)
        if message.is_read:
            return message

        updates: dict = {"is_read": True}
        if message.status is MessageStatus.NEW:
            updates["status"] = MessageStatus.READ
        updated = self._update(message_id, updates)
        if message.conversation_id:
            self.conversations.adjust_unread(message.conversation_id, -1)
        return updated

    def mark_as_unread(self, message_id: str) -> UnifiedMessage:
        message = self._require(message_id)
        if not message.is_read:
            return message

        updates: dict = {"is_read": False}
        if message.status is MessageStatus.READ:
            updates["status"] = MessageStatus.NEW
        updated = self._update(message_id, updates)
        if message.conversation_id:
            self.conversations.adjust_unread(message.conversation_id, 1)
        return updated

    def archive_message(self, message_id: str) -> UnifiedMessage:
        self._require(message_id)
        return self._update(message_id, {"status": MessageStatus.ARCHIVED})

    def delete_message(self, message_id: str) -> None:
        """Delete a message and reconcile its conversation from scratch.

        Raises:
            MessageNotFoundError: If the message does not exist.
        """

        message = self._require(message_id)
        self.store.delete_message(message_id)
        logger.info(
            "message_deleted",
            message_id=message_id,
            account_id=message.account_id,
            conversation_id=message.conversation_id,
        )

        if message.conversation_id:
            self.conversations.recalculate(message.conversation_id)

    def _require(self, message_id: str) -> UnifiedMessage:
        message = self.store.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    def _update(self, message_id: str, updates: dict) -> UnifiedMessage:
        updated = self.store.update_message(message_id, updates)
        if updated is None:
            raise MessageNotFoundError(message_id)
        return updated
