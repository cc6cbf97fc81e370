"""SQLite-backed store for accounts, messages, conversations and sync cursors.

Queryable fields live in their own columns; the full record is kept as JSON
alongside so the models round-trip without a column per attribute.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel

from mailbridge.exceptions import StorageError
from mailbridge.models import (
    ConnectedAccount,
    Conversation,
    ConversationFilters,
    MessageFilters,
    SyncState,
    UnifiedMessage,
)

logger = structlog.get_logger()


_SCHEMA_VERSION = 1


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _apply(model: BaseModel, updates: dict[str, Any]) -> Any:
    # Re-validate so enum values passed as strings and nested dicts are coerced.
    data = model.model_dump()
    data.update(updates)
    return type(model).model_validate(data)


class SqliteMailStore:
    """Repository implementing the ``MailStore`` interface on SQLite."""

    def __init__(self, db_path: Path) -> None:
        """Create a store.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = db_path

    def initialize(self) -> None:
        """Create or upgrade the schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("mail_store_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise StorageError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> ConnectedAccount | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        return None if row is None else ConnectedAccount.model_validate_json(row[0])

    def list_accounts(self, client_id: str | None = None) -> list[ConnectedAccount]:
        query = "SELECT payload_json FROM accounts"
        params: tuple[Any, ...] = ()
        if client_id is not None:
            query += " WHERE client_id = ?"
            params = (client_id,)
        query += " ORDER BY created_at_iso, id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [ConnectedAccount.model_validate_json(row[0]) for row in rows]

    def save_account(self, account: ConnectedAccount) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO accounts (id, client_id, email_address, status, created_at_iso, payload_json)
                VALUES (:id, :client_id, :email_address, :status, :created_at_iso, :payload_json)
                ON CONFLICT(id) DO UPDATE SET
                    client_id=excluded.client_id,
                    email_address=excluded.email_address,
                    status=excluded.status,
                    payload_json=excluded.payload_json
                """,
                {
                    "id": account.id,
                    "client_id": account.client_id,
                    "email_address": account.email_address,
                    "status": account.status.value,
                    "created_at_iso": _iso(account.created_at),
                    "payload_json": account.model_dump_json(),
                },
            )
            conn.commit()

    def update_account(self, account_id: str, updates: dict[str, Any]) -> ConnectedAccount | None:
        account = self.get_account(account_id)
        if account is None:
            return None
        updated: ConnectedAccount = _apply(account, updates)
        self.save_account(updated)
        return updated

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def get_message(self, message_id: str) -> UnifiedMessage | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
        return None if row is None else UnifiedMessage.model_validate_json(row[0])

    def get_message_by_provider_id(
        self, account_id: str, provider_message_id: str
    ) -> UnifiedMessage | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT payload_json FROM messages
                WHERE account_id = ? AND provider_message_id = ?
                """,
                (account_id, provider_message_id),
            ).fetchone()
        return None if row is None else UnifiedMessage.model_validate_json(row[0])

    def save_message(self, message: UnifiedMessage) -> bool:
        """Insert a message. Returns False when it already exists."""

        return bool(self.save_messages([message]))

    def save_messages(self, messages: list[UnifiedMessage]) -> list[str]:
        """Insert a batch of messages, skipping duplicates.

        Returns:
            Ids of the messages that were actually inserted, in input order.
        """

        if not messages:
            return []

        inserted: list[str] = []
        with self._connect() as conn:
            for message in messages:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO messages (
                        id, account_id, client_id, provider_message_id, thread_id,
                        conversation_id, date_iso, is_read, is_outgoing, status,
                        has_attachments, provider_uid, payload_json
                    )
                    VALUES (
                        :id, :account_id, :client_id, :provider_message_id, :thread_id,
                        :conversation_id, :date_iso, :is_read, :is_outgoing, :status,
                        :has_attachments, :provider_uid, :payload_json
                    )
                    """,
                    self._message_params(message),
                )
                if cursor.rowcount:
                    inserted.append(message.id)
                else:
                    logger.info(
                        "message_insert_ignored_duplicate",
                        account_id=message.account_id,
                        provider_message_id=message.provider_message_id,
                    )
            conn.commit()
        return inserted

    def update_message(self, message_id: str, updates: dict[str, Any]) -> UnifiedMessage | None:
        message = self.get_message(message_id)
        if message is None:
            return None
        updated: UnifiedMessage = _apply(message, updates)

        with self._connect() as conn:
            conn.execute(
                """
                UPDATE messages SET
                    thread_id=:thread_id,
                    conversation_id=:conversation_id,
                    date_iso=:date_iso,
                    is_read=:is_read,
                    is_outgoing=:is_outgoing,
                    status=:status,
                    has_attachments=:has_attachments,
                    provider_uid=:provider_uid,
                    payload_json=:payload_json
                WHERE id=:id
                """,
                self._message_params(updated),
            )
            conn.commit()
        return updated

    def delete_message(self, message_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            conn.commit()
        return bool(cursor.rowcount)

    def list_messages(self, filters: MessageFilters) -> list[UnifiedMessage]:
        where, params = self._message_where(filters)
        query = f"SELECT payload_json FROM messages {where} ORDER BY date_iso DESC, rowid DESC"
        if filters.limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([filters.limit, filters.offset])
        elif filters.offset:
            query += " LIMIT -1 OFFSET ?"
            params.append(filters.offset)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [UnifiedMessage.model_validate_json(row[0]) for row in rows]

    def count_messages(self, filters: MessageFilters) -> int:
        where, params = self._message_where(filters)
        with self._connect() as conn:
            (count,) = conn.execute(f"SELECT COUNT(*) FROM messages {where}", params).fetchone()
        return int(count or 0)

    def get_conversation_messages(self, conversation_id: str) -> list[UnifiedMessage]:
        """Return a conversation's messages, oldest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT payload_json FROM messages
                WHERE conversation_id = ?
                ORDER BY date_iso ASC, rowid ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [UnifiedMessage.model_validate_json(row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return None if row is None else Conversation.model_validate_json(row[0])

    def get_conversation_by_thread_id(self, account_id: str, thread_id: str) -> Conversation | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT c.payload_json
                FROM conversation_threads t
                JOIN conversations c ON c.id = t.conversation_id
                WHERE t.account_id = ? AND t.thread_id = ?
                ORDER BY c.created_at_iso ASC, c.rowid ASC
                LIMIT 1
                """,
                (account_id, thread_id),
            ).fetchone()
        return None if row is None else Conversation.model_validate_json(row[0])

    def save_conversation(self, conversation: Conversation) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversations (
                    id, account_id, client_id, status, subject, snippet,
                    last_message_at_iso, created_at_iso, payload_json
                )
                VALUES (
                    :id, :account_id, :client_id, :status, :subject, :snippet,
                    :last_message_at_iso, :created_at_iso, :payload_json
                )
                ON CONFLICT(id) DO UPDATE SET
                    status=excluded.status,
                    subject=excluded.subject,
                    snippet=excluded.snippet,
                    last_message_at_iso=excluded.last_message_at_iso,
                    payload_json=excluded.payload_json
                """,
                {
                    "id": conversation.id,
                    "account_id": conversation.account_id,
                    "client_id": conversation.client_id,
                    "status": conversation.status.value,
                    "subject": conversation.subject,
                    "snippet": conversation.snippet,
                    "last_message_at_iso": _iso(conversation.last_message_at),
                    "created_at_iso": _iso(conversation.created_at),
                    "payload_json": conversation.model_dump_json(),
                },
            )
            conn.execute(
                "DELETE FROM conversation_threads WHERE conversation_id = ?", (conversation.id,)
            )
            conn.executemany(
                """
                INSERT OR IGNORE INTO conversation_threads (conversation_id, account_id, thread_id)
                VALUES (?, ?, ?)
                """,
                [(conversation.id, conversation.account_id, t) for t in conversation.thread_ids],
            )
            conn.commit()

    def update_conversation(
        self, conversation_id: str, updates: dict[str, Any]
    ) -> Conversation | None:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return None
        updated: Conversation = _apply(conversation, updates)
        self.save_conversation(updated)
        return updated

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM conversation_threads WHERE conversation_id = ?", (conversation_id,)
            )
            cursor = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            conn.commit()
        return bool(cursor.rowcount)

    def list_conversations(self, filters: ConversationFilters) -> list[Conversation]:
        where, params = self._conversation_where(filters)
        query = (
            f"SELECT payload_json FROM conversations {where} "
            "ORDER BY last_message_at_iso DESC, rowid DESC LIMIT ? OFFSET ?"
        )
        params.extend([filters.limit, filters.offset])
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Conversation.model_validate_json(row[0]) for row in rows]

    def count_conversations(self, filters: ConversationFilters) -> int:
        where, params = self._conversation_where(filters)
        with self._connect() as conn:
            (count,) = conn.execute(
                f"SELECT COUNT(*) FROM conversations {where}", params
            ).fetchone()
        return int(count or 0)

    # ------------------------------------------------------------------
    # Sync state
    # ------------------------------------------------------------------

    def get_sync_state(self, account_id: str) -> SyncState | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT account_id, last_uid, last_sync_at_iso FROM sync_state WHERE account_id = ?",
                (account_id,),
            ).fetchone()
        if row is None:
            return None
        return SyncState(
            account_id=row["account_id"],
            last_uid=row["last_uid"],
            last_sync_at=datetime.fromisoformat(row["last_sync_at_iso"])
            if row["last_sync_at_iso"]
            else None,
        )

    def save_sync_state(self, state: SyncState) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (account_id, last_uid, last_sync_at_iso)
                VALUES (?, ?, ?)
                ON CONFLICT(account_id) DO UPDATE SET
                    last_uid=excluded.last_uid,
                    last_sync_at_iso=excluded.last_sync_at_iso
                """,
                (state.account_id, state.last_uid, _iso(state.last_sync_at)),
            )
            conn.commit()

    def clear_sync_state(self, account_id: str) -> None:
        """Forget the cursor (forces a full sync on the next run)."""

        with self._connect() as conn:
            conn.execute("DELETE FROM sync_state WHERE account_id = ?", (account_id,))
            conn.commit()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as exc:
            logger.exception("mail_store_error", db_path=str(self._db_path), error=str(exc))
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _message_params(self, message: UnifiedMessage) -> dict[str, Any]:
        return {
            "id": message.id,
            "account_id": message.account_id,
            "client_id": message.client_id,
            "provider_message_id": message.provider_message_id,
            "thread_id": message.thread_id,
            "conversation_id": message.conversation_id,
            "date_iso": _iso(message.date),
            "is_read": 1 if message.is_read else 0,
            "is_outgoing": 1 if message.is_outgoing else 0,
            "status": message.status.value,
            "has_attachments": 1 if message.has_attachments else 0,
            "provider_uid": message.provider_uid,
            "payload_json": message.model_dump_json(),
        }

    def _message_where(self, filters: MessageFilters) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []

        for column, value in (
            ("account_id", filters.account_id),
            ("client_id", filters.client_id),
            ("conversation_id", filters.conversation_id),
            ("thread_id", filters.thread_id),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        for column, flag in (
            ("is_read", filters.is_read),
            ("is_outgoing", filters.is_outgoing),
            ("has_attachments", filters.has_attachments),
        ):
            if flag is not None:
                clauses.append(f"{column} = ?")
                params.append(1 if flag else 0)

        if filters.since is not None:
            clauses.append("date_iso >= ?")
            params.append(_iso(filters.since))
        if filters.until is not None:
            clauses.append("date_iso <= ?")
            params.append(_iso(filters.until))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _conversation_where(self, filters: ConversationFilters) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []

        if filters.account_id is not None:
            clauses.append("account_id = ?")
            params.append(filters.account_id)
        if filters.client_id is not None:
            clauses.append("client_id = ?")
            params.append(filters.client_id)
        if filters.status is not None:
            clauses.append("status = ?")
            params.append(filters.status.value)
        if filters.search:
            clauses.append("(LOWER(subject) LIKE ? OR LOWER(snippet) LIKE ?)")
            needle = f"%{filters.search.lower()}%"
            params.extend([needle, needle])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL,
                email_address TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at_iso TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_accounts_client
                ON accounts(client_id);

            CREATE TABLE IF NOT EXISTS messages (
                rowid INTEGER PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                account_id TEXT NOT NULL,
                client_id TEXT NOT NULL,
                provider_message_id TEXT NOT NULL,
                thread_id TEXT NOT NULL,
                conversation_id TEXT,
                date_iso TEXT NOT NULL,
                is_read INTEGER NOT NULL,
                is_outgoing INTEGER NOT NULL,
                status TEXT NOT NULL,
                has_attachments INTEGER NOT NULL,
                provider_uid INTEGER,
                payload_json TEXT NOT NULL,
                UNIQUE (account_id, provider_message_id)
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages(conversation_id);

            CREATE INDEX IF NOT EXISTS idx_messages_account_date
                ON messages(account_id, date_iso);

            CREATE TABLE IF NOT EXISTS conversations (
                rowid INTEGER PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                account_id TEXT NOT NULL,
                client_id TEXT NOT NULL,
                status TEXT NOT NULL,
                subject TEXT NOT NULL,
                snippet TEXT NOT NULL,
                last_message_at_iso TEXT NOT NULL,
                created_at_iso TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_conversations_account_last
                ON conversations(account_id, last_message_at_iso);

            CREATE TABLE IF NOT EXISTS conversation_threads (
                conversation_id TEXT NOT NULL,
                account_id TEXT NOT NULL,
                thread_id TEXT NOT NULL,
                PRIMARY KEY (conversation_id, thread_id)
            );

            CREATE INDEX IF NOT EXISTS idx_conversation_threads_lookup
                ON conversation_threads(account_id, thread_id);

            CREATE TABLE IF NOT EXISTS sync_state (
                account_id TEXT PRIMARY KEY,
                last_uid INTEGER,
                last_sync_at_iso TEXT
            );
            """
        )
