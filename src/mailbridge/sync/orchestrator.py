"""Per-account incremental sync.

One call fetches a bounded batch of new messages, normalizes and
deduplicates them, routes them into conversations and advances the
account's cursor. Calls for the same account are serialized through the
context's account lock.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from mailbridge.context import EngineContext
from mailbridge.conversations.service import ConversationService
from mailbridge.exceptions import (
    AuthenticationError,
    MailbridgeError,
    MessageParseError,
    TransportError,
)
from mailbridge.mail.parsing import parse_raw_message
from mailbridge.models import (
    AccountStatus,
    ConnectedAccount,
    FetchRequest,
    RawMailItem,
    SyncErrorKind,
    SyncResult,
    SyncState,
    SyncSummary,
    UnifiedMessage,
    utc_now,
)
from mailbridge.sync.normalizer import normalize_message

logger = structlog.get_logger()


class SyncOrchestrator:
    """Bring one account's stored mailbox state up to date."""

    def __init__(
        self, context: EngineContext, conversations: ConversationService | None = None
    ) -> None:
        self.context = context
        self.store = context.store
        self.conversations = conversations or ConversationService(context)

    async def sync_account(
        self,
        account_id: str,
        max_messages: int | None = None,
        since: datetime | None = None,
    ) -> SyncResult:
        """Sync a single account.

        Args:
            account_id: Account to sync.
            max_messages: Messages to fetch in this call; clamped to the configured limit.
            since: Lower bound for the first (cursor-less) sync. The account
                creation time is used when it is later.

        Returns:
            SyncResult: Never raises for transport or authentication failures;
            those are recorded on the account and reported in the result.
        """

        async with self.context.account_lock(account_id):
            return await self._sync_account(account_id, max_messages, since)

    async def sync_all(self, max_messages: int | None = None) -> SyncSummary:
        """Sync every account sequentially."""

        return await self._sync_many(self.store.list_accounts(), max_messages)

    async def sync_client(self, client_id: str, max_messages: int | None = None) -> SyncSummary:
        """Sync every account owned by one tenant."""

        return await self._sync_many(self.store.list_accounts(client_id), max_messages)

    async def reset_sync_state(self, account_id: str) -> None:
        """Forget the cursor so the next sync starts from the account's since-bound."""

        async with self.context.account_lock(account_id):
            self.store.clear_sync_state(account_id)
        logger.info("sync_state_reset", account_id=account_id)

    async def _sync_many(
        self, accounts: list[ConnectedAccount], max_messages: int | None
    ) -> SyncSummary:
        summary = SyncSummary()
        for account in accounts:
            summary.results.append(await self.sync_account(account.id, max_messages))

        logger.info(
            "sync_batch_completed",
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            new_messages=summary.new_messages,
        )
        return summary

    async def _sync_account(
        self, account_id: str, max_messages: int | None, since: datetime | None
    ) -> SyncResult:
        account = self.store.get_account(account_id)
        if account is None:
            logger.warning("sync_account_not_found", account_id=account_id)
            return SyncResult(
                account_id=account_id,
                success=False,
                error="Account not found",
                error_kind=SyncErrorKind.ACCOUNT_NOT_FOUND,
            )

        match account.status:
            case AccountStatus.ACTIVE | AccountStatus.ERROR:
                pass
            case AccountStatus.DISCONNECTED | AccountStatus.PENDING:
                logger.info("sync_account_inactive", account_id=account_id, status=account.status.value)
                return SyncResult(
                    account_id=account_id,
                    success=False,
                    error=f"Account is {account.status.value}",
                    error_kind=SyncErrorKind.ACCOUNT_INACTIVE,
                )

        state = self.store.get_sync_state(account_id)
        request = self._build_request(account, state, since, max_messages)

        logger.info(
            "sync_started",
            account_id=account_id,
            incremental=request.is_incremental,
            after_uid=request.after_uid,
            since=request.since.isoformat() if request.since else None,
            max_count=request.max_count,
        )

        try:
            transport = self.context.transport_for(account)
            items = await transport.fetch_since(account, request)
            new_messages, unthreaded, max_uid = self._collect(account, items)

            inserted_ids = set(self.store.save_messages(new_messages))
            stored = [*unthreaded, *(m for m in new_messages if m.id in inserted_ids)]
            for message in stored:
                self.conversations.assign_message(message)

            now = utc_now()
            previous_uid = state.last_uid if state else None
            self.store.save_sync_state(
                SyncState(
                    account_id=account_id,
                    last_uid=self._advance(previous_uid, max_uid),
                    last_sync_at=now,
                )
            )
            self.store.update_account(
                account_id,
                {
                    "status": AccountStatus.ACTIVE,
                    "last_error": None,
                    "last_sync_at": now,
                    "updated_at": now,
                },
            )
        except AuthenticationError as exc:
            return self._record_failure(account, exc, SyncErrorKind.AUTHENTICATION)
        except TransportError as exc:
            return self._record_failure(account, exc, SyncErrorKind.CONNECTION)
        except MailbridgeError as exc:
            return self._record_failure(account, exc, SyncErrorKind.UNEXPECTED)

        logger.info(
            "sync_completed",
            account_id=account_id,
            fetched=len(items),
            new_messages=len(stored),
        )
        return SyncResult(account_id=account_id, success=True, new_message_count=len(stored))

    def _build_request(
        self,
        account: ConnectedAccount,
        state: SyncState | None,
        since: datetime | None,
        max_messages: int | None,
    ) -> FetchRequest:
        settings = self.context.settings
        limit = max_messages or settings.sync_default_max_messages
        limit = max(1, min(limit, settings.sync_max_messages_limit))

        if state is not None and state.last_uid is not None:
            return FetchRequest(after_uid=state.last_uid, max_count=limit)

        # Never reach back past the account's creation, so a fresh account
        # doesn't pull its whole history.
        bound = account.created_at if since is None else max(since, account.created_at)
        return FetchRequest(since=bound, max_count=limit)

    def _collect(
        self, account: ConnectedAccount, items: list[RawMailItem]
    ) -> tuple[list[UnifiedMessage], list[UnifiedMessage], int | None]:
        """Parse and dedup a fetched batch.

        Returns the new messages, already-stored messages that never reached a
        conversation (left by a call that failed midway), and the highest UID seen.
        """
        received_at = utc_now()
        seen: set[str] = set()
        new_messages: list[UnifiedMessage] = []
        unthreaded: list[UnifiedMessage] = []
        max_uid: int | None = None

        for item in items:
            try:
                parsed = parse_raw_message(item.source)
                message = normalize_message(
                    parsed,
                    account,
                    uid=item.uid,
                    received_at=received_at,
                    is_read=item.is_seen,
                )
            except (MessageParseError, ValueError) as exc:
                logger.warning(
                    "message_parse_failed", account_id=account.id, uid=item.uid, error=str(exc)
                )
                continue

            max_uid = item.uid if max_uid is None else max(max_uid, item.uid)

            if message is None:
                continue

            existing = None
            if message.provider_message_id not in seen:
                existing = self.store.get_message_by_provider_id(
                    account.id, message.provider_message_id
                )
                if existing is not None and existing.conversation_id is None:
                    logger.info(
                        "message_unthreaded_recovered",
                        account_id=account.id,
                        uid=item.uid,
                        message_id=existing.id,
                    )
                    seen.add(message.provider_message_id)
                    unthreaded.append(existing)
                    continue

            if message.provider_message_id in seen or existing is not None:
                logger.debug(
                    "message_deduplicated",
                    account_id=account.id,
                    uid=item.uid,
                    provider_message_id=message.provider_message_id,
                )
                continue

            seen.add(message.provider_message_id)
            new_messages.append(message)

        return new_messages, unthreaded, max_uid

    @staticmethod
    def _advance(previous: int | None, seen: int | None) -> int | None:
        if previous is None:
            return seen
        if seen is None:
            return previous
        return max(previous, seen)

    def _record_failure(
        self, account: ConnectedAccount, exc: Exception, kind: SyncErrorKind
    ) -> SyncResult:
        message = str(exc) or exc.__class__.__name__
        logger.error(
            "sync_failed",
            account_id=account.id,
            error_kind=kind.value,
            error=message,
        )
        try:
            self.store.update_account(
                account.id,
                {"status": AccountStatus.ERROR, "last_error": message, "updated_at": utc_now()},
            )
        except MailbridgeError as update_exc:
            logger.exception(
                "sync_failure_not_recorded", account_id=account.id, error=str(update_exc)
            )
        return SyncResult(
            account_id=account.id,
            success=False,
            error=message,
            error_kind=kind,
            retryable=bool(getattr(exc, "retryable", False)),
        )
