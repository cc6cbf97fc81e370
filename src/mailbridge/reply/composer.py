"""Compose and send threaded replies.

A reply's ``References`` chain is the target's chain with the target's own
Message-ID appended, and ``In-Reply-To`` is the target's Message-ID. The
sent message is stored and routed through the conversation matcher like
any incoming message, so it joins the target's conversation.
"""

from __future__ import annotations

from typing import Any

import structlog

from mailbridge.context import EngineContext
from mailbridge.conversations.service import ConversationService
from mailbridge.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    MessageNotFoundError,
)
from mailbridge.mail.building import generate_message_id
from mailbridge.models import (
    NO_SUBJECT,
    AccountStatus,
    ConnectedAccount,
    DeliveryConfirmation,
    MessageStatus,
    OutgoingMail,
    ReplyContent,
    SentMessage,
    UnifiedMessage,
    utc_now,
)
from mailbridge.sync.normalizer import resolve_thread_id
from mailbridge.utils.text import reply_subject

logger = structlog.get_logger()


def build_reply_headers(target: UnifiedMessage) -> tuple[str, list[str]]:
    """Return ``(in_reply_to, references)`` for a reply to ``target``."""

    return target.provider_message_id, [*target.references, target.provider_message_id]


class ReplyComposer:
    """Send replies and new messages through the account's transport."""

    def __init__(
        self, context: EngineContext, conversations: ConversationService | None = None
    ) -> None:
        self.context = context
        self.store = context.store
        self.conversations = conversations or ConversationService(context)

    async def send_reply(self, target_message_id: str, content: ReplyContent) -> SentMessage:
        """Reply to a stored message.

        Args:
            target_message_id: Internal id of the message being answered.
            content: Body, optional subject override and recipients.

        Returns:
            SentMessage: The stored outgoing message and its conversation.

        Raises:
            MessageNotFoundError: If the target does not exist. Nothing is sent.
            AccountNotFoundError: If the target's account no longer exists.
            AccountInactiveError: If the account is disconnected or pending.
            TransportError: Propagated unchanged from the transport.
        """

        target = self.store.get_message(target_message_id)
        if target is None:
            raise MessageNotFoundError(target_message_id)

        async with self.context.account_lock(target.account_id):
            # Read state may have changed while waiting for the lock.
            target = self.store.get_message(target_message_id)
            if target is None:
                raise MessageNotFoundError(target_message_id)
            account = self._require_account(target.account_id)
            in_reply_to, references = build_reply_headers(target)

            mail = OutgoingMail(
                message_id=generate_message_id(account.email_address),
                sender=account.identity,
                to=content.to or [target.reply_to or target.sender],
                cc=content.cc,
                bcc=content.bcc,
                subject=reply_subject(content.subject or target.subject),
                body_text=content.body_text,
                body_html=content.body_html,
                in_reply_to=in_reply_to,
                references=references,
            )

            confirmation = await self.context.transport_for(account).send(account, mail)
            sent = self._record_outgoing(account, mail, confirmation, MessageStatus.REPLIED)
            self._mark_replied(target)

        logger.info(
            "reply_sent",
            account_id=account.id,
            target_message_id=target.id,
            sent_message_id=sent.sent_message_id,
            conversation_id=sent.conversation_id,
        )
        return sent

    async def send_message(self, account_id: str, content: ReplyContent) -> SentMessage:
        """Send a new message that starts its own conversation.

        Raises:
            AccountNotFoundError: If the account does not exist.
            AccountInactiveError: If the account is disconnected or pending.
            ValueError: If no recipient is given.
            TransportError: Propagated unchanged from the transport.
        """

        async with self.context.account_lock(account_id):
            account = self._require_account(account_id)
            mail = OutgoingMail(
                message_id=generate_message_id(account.email_address),
                sender=account.identity,
                to=content.to,
                cc=content.cc,
                bcc=content.bcc,
                subject=content.subject or NO_SUBJECT,
                body_text=content.body_text,
                body_html=content.body_html,
            )

            confirmation = await self.context.transport_for(account).send(account, mail)
            sent = self._record_outgoing(account, mail, confirmation, MessageStatus.READ)

        logger.info(
            "message_sent",
            account_id=account.id,
            sent_message_id=sent.sent_message_id,
            conversation_id=sent.conversation_id,
        )
        return sent

    def _require_account(self, account_id: str) -> ConnectedAccount:
        account = self.store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        match account.status:
            case AccountStatus.ACTIVE | AccountStatus.ERROR:
                return account
            case AccountStatus.DISCONNECTED | AccountStatus.PENDING:
                raise AccountInactiveError(f"Account is {account.status.value}")

    def _record_outgoing(
        self,
        account: ConnectedAccount,
        mail: OutgoingMail,
        confirmation: DeliveryConfirmation,
        status: MessageStatus,
    ) -> SentMessage:
        now = utc_now()
        provider_message_id = confirmation.message_id or mail.message_id

        message = UnifiedMessage(
            account_id=account.id,
            client_id=account.client_id,
            provider_message_id=provider_message_id,
            thread_id=resolve_thread_id(provider_message_id, mail.in_reply_to, mail.references),
            in_reply_to=mail.in_reply_to,
            references=list(mail.references),
            sender=mail.sender,
            to=mail.to,
            cc=mail.cc,
            bcc=mail.bcc,
            subject=mail.subject,
            body_text=mail.body_text,
            body_html=mail.body_html,
            date=now,
            received_at=now,
            is_read=True,
            is_outgoing=True,
            status=status,
            synced_at=now,
        )

        if not self.store.save_message(message):
            # Already recorded, e.g. the sent copy was synced back first.
            existing = self.store.get_message_by_provider_id(account.id, provider_message_id)
            if existing is not None:
                message = existing

        conversation = self.conversations.assign_message(message)
        return SentMessage(message=message, conversation_id=conversation.id)

    def _mark_replied(self, target: UnifiedMessage) -> None:
        updates: dict[str, Any] = {"status": MessageStatus.REPLIED, "is_read": True}
        self.store.update_message(target.id, updates)
        if not target.is_read and target.conversation_id:
            self.conversations.adjust_unread(target.conversation_id, -1)
