"""Conversation matching and aggregate maintenance.

Every stored message, incoming or outgoing, belongs to exactly one
conversation. Incremental updates assume messages arrive in chronological
order; when a message is older than the conversation's latest one the
aggregate is rebuilt from the stored messages instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from mailbridge.context import EngineContext
from mailbridge.exceptions import ConversationNotFoundError, MailbridgeError
from mailbridge.models import (
    Conversation,
    ConversationFilters,
    ConversationStatus,
    ConversationWithMessages,
    MessageFilters,
    MessageStatus,
    UnifiedMessage,
    utc_now,
)
from mailbridge.utils.text import (
    create_snippet,
    extract_participants,
    merge_participants,
    normalize_subject,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class RebuildReport:
    """Summary of assigning unlinked messages to conversations."""

    total_messages: int
    already_linked: int
    processed: int
    conversations_created: int
    errors: int


class ConversationService:
    """Find or create conversations for messages and keep their aggregates correct."""

    def __init__(self, context: EngineContext) -> None:
        self.context = context
        self.store = context.store

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def find_conversation_for_message(self, message: UnifiedMessage) -> Conversation | None:
        """Look up the conversation a message threads into, scoped to its account.

        In-Reply-To is tried first, then each References entry in order, then
        the message's own Message-ID (an earlier reply may already have
        registered it as a thread root).
        """

        account_id = message.account_id

        if message.in_reply_to:
            conv = self.store.get_conversation_by_thread_id(account_id, message.in_reply_to)
            if conv is not None:
                return conv

        for ref in message.references:
            conv = self.store.get_conversation_by_thread_id(account_id, ref)
            if conv is not None:
                return conv

        return self.store.get_conversation_by_thread_id(account_id, message.provider_message_id)

    def assign_message(self, message: UnifiedMessage) -> Conversation:
        """Route a stored message into its conversation and update the aggregate.

        The message must already be persisted. Its ``conversation_id`` is set
        in the store and on the passed instance.
        """

        if message.conversation_id:
            existing = self.store.get_conversation(message.conversation_id)
            if existing is not None:
                return existing

        conversation = self.find_conversation_for_message(message)
        if conversation is None:
            conversation = self._create_from_message(message)
            self._link(message, conversation.id)
            return conversation

        self._link(message, conversation.id)
        return self._add_message(conversation, message)

    def _create_from_message(self, message: UnifiedMessage) -> Conversation:
        conversation = Conversation(
            account_id=message.account_id,
            client_id=message.client_id,
            subject=normalize_subject(message.subject),
            snippet=self._snippet(message),
            participants=extract_participants(message.participants()),
            last_sender=message.sender,
            status=ConversationStatus.OPEN,
            message_count=1,
            unread_count=0 if message.is_read else 1,
            last_message_at=message.date,
            created_at=message.date,
            thread_ids=[message.provider_message_id],
        )
        self.store.save_conversation(conversation)
        logger.info(
            "conversation_created",
            conversation_id=conversation.id,
            account_id=conversation.account_id,
            thread_id=message.provider_message_id,
        )
        return conversation

    def _add_message(self, conversation: Conversation, message: UnifiedMessage) -> Conversation:
        updates: dict[str, Any] = {}

        match conversation.status:
            case ConversationStatus.CLOSED:
                updates["status"] = ConversationStatus.OPEN
                updates["closed_at"] = None
                logger.info("conversation_reopened", conversation_id=conversation.id)
            case ConversationStatus.OPEN | ConversationStatus.ARCHIVED:
                pass

        if message.date < conversation.last_message_at:
            logger.info(
                "conversation_out_of_order_message",
                conversation_id=conversation.id,
                message_id=message.id,
            )
            if updates:
                self.store.update_conversation(conversation.id, updates)
            rebuilt = self.recalculate(conversation.id)
            if rebuilt is None:
                raise ConversationNotFoundError(conversation.id)
            return rebuilt

        if message.provider_message_id not in conversation.thread_ids:
            updates["thread_ids"] = [*conversation.thread_ids, message.provider_message_id]

        updates["message_count"] = conversation.message_count + 1
        updates["unread_count"] = conversation.unread_count + (0 if message.is_read else 1)

        participants, grew = merge_participants(conversation.participants, message.participants())
        if grew:
            updates["participants"] = participants

        updates["snippet"] = self._snippet(message)
        updates["last_sender"] = message.sender
        updates["last_message_at"] = message.date

        updated = self.store.update_conversation(conversation.id, updates)
        if updated is None:
            raise ConversationNotFoundError(conversation.id)

        logger.debug(
            "conversation_message_added",
            conversation_id=conversation.id,
            message_id=message.id,
            message_count=updated.message_count,
        )
        return updated

    def _link(self, message: UnifiedMessage, conversation_id: str) -> None:
        self.store.update_message(message.id, {"conversation_id": conversation_id})
        message.conversation_id = conversation_id

    def _snippet(self, message: UnifiedMessage) -> str:
        return create_snippet(
            message.body_text,
            max_length=self.context.settings.snippet_length,
            body_html=message.body_html,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def recalculate(self, conversation_id: str) -> Conversation | None:
        """Rebuild a conversation's aggregate from its stored messages.

        Deletes the conversation when no messages remain and returns None.
        """

        messages = self.store.get_conversation_messages(conversation_id)

        if not messages:
            self.store.delete_conversation(conversation_id)
            logger.info("conversation_deleted_empty", conversation_id=conversation_id)
            return None

        last = messages[-1]
        thread_ids = list(dict.fromkeys(m.provider_message_id for m in messages))
        participants = extract_participants(p for m in messages for p in m.participants())

        updated = self.store.update_conversation(
            conversation_id,
            {
                "message_count": len(messages),
                "unread_count": sum(1 for m in messages if not m.is_read),
                "thread_ids": thread_ids,
                "participants": participants,
                "last_sender": last.sender,
                "last_message_at": last.date,
                "snippet": self._snippet(last),
            },
        )
        logger.info(
            "conversation_recalculated",
            conversation_id=conversation_id,
            message_count=len(messages),
        )
        return updated

    def adjust_unread(self, conversation_id: str, delta: int) -> None:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            return
        unread = max(0, conversation.unread_count + delta)
        if unread != conversation.unread_count:
            self.store.update_conversation(conversation_id, {"unread_count": unread})

    def rebuild_account(self, account_id: str) -> RebuildReport:
        """Assign every unlinked message of an account, oldest first."""

        messages = self.store.list_messages(MessageFilters(account_id=account_id, limit=None))
        messages.sort(key=lambda m: m.date)

        already_linked = processed = created = errors = 0
        for message in messages:
            if message.conversation_id:
                already_linked += 1
                continue
            try:
                conversation = self.assign_message(message)
            except MailbridgeError as exc:
                errors += 1
                logger.error(
                    "conversation_rebuild_message_failed", message_id=message.id, error=str(exc)
                )
                continue
            processed += 1
            if conversation.message_count == 1:
                created += 1

        report = RebuildReport(
            total_messages=len(messages),
            already_linked=already_linked,
            processed=processed,
            conversations_created=created,
            errors=errors,
        )
        logger.info("conversation_rebuild_completed", account_id=account_id, **vars(report))
        return report

    # ------------------------------------------------------------------
    # Queries and status transitions
    # ------------------------------------------------------------------

    def get_conversation(self, conversation_id: str) -> ConversationWithMessages | None:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            return None
        return ConversationWithMessages(
            conversation=conversation,
            messages=self.store.get_conversation_messages(conversation_id),
        )

    def list_conversations(self, filters: ConversationFilters) -> list[Conversation]:
        return self.store.list_conversations(filters)

    def count_conversations(self, filters: ConversationFilters) -> int:
        return self.store.count_conversations(filters)

    def close_conversation(self, conversation_id: str) -> Conversation:
        return self._update_or_raise(
            conversation_id, {"status": ConversationStatus.CLOSED, "closed_at": utc_now()}
        )

    def reopen_conversation(self, conversation_id: str) -> Conversation:
        return self._update_or_raise(
            conversation_id, {"status": ConversationStatus.OPEN, "closed_at": None}
        )

    def archive_conversation(self, conversation_id: str) -> Conversation:
        return self._update_or_raise(conversation_id, {"status": ConversationStatus.ARCHIVED})

    def mark_conversation_read(self, conversation_id: str) -> Conversation:
        """Mark every message read and zero the unread count."""

        for message in self.store.get_conversation_messages(conversation_id):
            if message.is_read:
                continue
            updates: dict[str, Any] = {"is_read": True}
            if message.status is MessageStatus.NEW:
                updates["status"] = MessageStatus.READ
            self.store.update_message(message.id, updates)

        return self._update_or_raise(conversation_id, {"unread_count": 0})

    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation together with all of its messages."""

        if self.store.get_conversation(conversation_id) is None:
            raise ConversationNotFoundError(conversation_id)

        messages = self.store.get_conversation_messages(conversation_id)
        for message in messages:
            self.store.delete_message(message.id)
        self.store.delete_conversation(conversation_id)
        logger.info(
            "conversation_deleted",
            conversation_id=conversation_id,
            message_count=len(messages),
        )

    def _update_or_raise(self, conversation_id: str, updates: dict[str, Any]) -> Conversation:
        updated = self.store.update_conversation(conversation_id, updates)
        if updated is None:
            raise ConversationNotFoundError(conversation_id)
        return updated
