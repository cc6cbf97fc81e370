"""Engine facade.

``MailEngine`` wires the sync, conversation, message and reply components
around one ``EngineContext`` and exposes the two top-level operations,
``sync_account`` and ``send_reply``.
"""

from __future__ import annotations

from functools import partial

import structlog

from mailbridge.config import Settings, get_settings
from mailbridge.context import EngineContext
from mailbridge.conversations import ConversationService
from mailbridge.exceptions import MailbridgeError
from mailbridge.messages import MessageService
from mailbridge.models import ReplyContent, ReplyResult, SyncResult
from mailbridge.reply import ReplyComposer
from mailbridge.storage import MailStore, SqliteMailStore
from mailbridge.sync import SyncOrchestrator
from mailbridge.transport import get_transport

logger = structlog.get_logger()


class MailEngine:
    """Multi-tenant mail sync and reply engine."""

    def __init__(self, context: EngineContext) -> None:
        self.context = context
        self.conversations = ConversationService(context)
        self.messages = MessageService(context, self.conversations)
        self.sync = SyncOrchestrator(context, self.conversations)
        self.composer = ReplyComposer(context, self.conversations)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MailEngine":
        """Build an engine backed by SQLite and the bundled IMAP/SMTP transport."""

        settings = settings or get_settings()
        store = SqliteMailStore(settings.db_path)
        store.initialize()
        context = EngineContext(
            settings=settings,
            store=store,
            transport_factory=partial(get_transport, settings=settings),
        )
        return cls(context)

    @property
    def store(self) -> MailStore:
        return self.context.store

    async def sync_account(self, account_id: str, max_messages: int | None = None) -> SyncResult:
        """Fetch and ingest new messages for one account."""

        return await self.sync.sync_account(account_id, max_messages=max_messages)

    async def send_reply(self, target_message_id: str, content: ReplyContent) -> ReplyResult:
        """Reply to a stored message and report the outcome.

        Errors are reported in the result rather than raised.
        """

        try:
            sent = await self.composer.send_reply(target_message_id, content)
        except MailbridgeError as exc:
            logger.error("reply_failed", target_message_id=target_message_id, error=str(exc))
            return ReplyResult(success=False, error=str(exc) or exc.__class__.__name__)

        return ReplyResult(
            success=True,
            message_id=sent.message.id,
            sent_message_id=sent.sent_message_id,
        )
