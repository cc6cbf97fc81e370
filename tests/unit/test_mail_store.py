"""Unit tests for the SQLite mail store."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from mailbridge.exceptions import StorageError
from mailbridge.models import (
    AccountStatus,
    ConnectedAccount,
    Conversation,
    ConversationFilters,
    ConversationStatus,
    MessageFilters,
    MessageStatus,
    SyncState,
)
from mailbridge.storage import SqliteMailStore


class TestSchema:
    """Test suite for schema management."""

    def test_initialize_is_idempotent(self, tmp_path) -> None:
        """Test that initializing twice keeps the existing schema."""
        repo = SqliteMailStore(tmp_path / "nested" / "db.sqlite3")
        repo.initialize()
        repo.initialize()

        assert repo.list_accounts() == []

    def test_unknown_schema_version_rejected(self, tmp_path) -> None:
        """Test that an unexpected schema version is an error."""
        db_path = tmp_path / "db.sqlite3"
        SqliteMailStore(db_path).initialize()
        with sqlite3.connect(db_path) as conn:
            conn.execute("UPDATE _schema_meta SET value = '99' WHERE key = 'schema_version'")

        with pytest.raises(StorageError):
            SqliteMailStore(db_path).initialize()


class TestAccounts:
    """Test suite for account persistence."""

    def test_save_and_list_by_client(self, store) -> None:
        """Test that accounts are scoped by tenant."""
        a = ConnectedAccount(client_id="c1", email_address="a@example.com")
        b = ConnectedAccount(client_id="c2", email_address="b@example.com")
        store.save_account(a)
        store.save_account(b)

        assert [x.id for x in store.list_accounts("c1")] == [a.id]
        assert {x.id for x in store.list_accounts()} == {a.id, b.id}

    def test_update_account(self, store, account) -> None:
        """Test partial updates with enum coercion."""
        updated = store.update_account(account.id, {"status": "error", "last_error": "boom"})

        assert updated is not None
        assert updated.status is AccountStatus.ERROR
        assert store.get_account(account.id).last_error == "boom"

    def test_update_missing_account(self, store) -> None:
        """Test that updating an unknown account returns None."""
        assert store.update_account("missing", {"last_error": "x"}) is None


class TestMessages:
    """Test suite for message persistence."""

    def test_duplicate_provider_id_ignored(self, store, make_message) -> None:
        """Test that a second copy of the same Message-ID is not stored."""
        first = make_message("<m1@example.com>")
        second = make_message("<m1@example.com>")

        assert store.save_message(first) is True
        assert store.save_message(second) is False
        assert store.count_messages(MessageFilters(account_id=first.account_id)) == 1
        assert store.get_message(second.id) is None

    def test_same_provider_id_in_other_account(self, store, account, make_message) -> None:
        """Test that dedup is scoped per account."""
        other = ConnectedAccount(client_id="c2", email_address="other@example.com")
        store.save_account(other)
        mine = make_message("<m1@example.com>")
        theirs = mine.model_copy(update={"id": "other-msg", "account_id": other.id})

        assert store.save_messages([mine, theirs]) == [mine.id, "other-msg"]

    def test_save_messages_returns_inserted_ids(self, store, make_message) -> None:
        """Test that batch save reports only new rows."""
        m1 = make_message("<m1@example.com>")
        store.save_message(m1)
        m2 = make_message("<m2@example.com>")
        dup = make_message("<m1@example.com>")

        assert store.save_messages([m2, dup]) == [m2.id]

    def test_lookup_and_update(self, store, make_message) -> None:
        """Test lookup by provider id and partial update."""
        message = make_message("<m1@example.com>")
        store.save_message(message)

        found = store.get_message_by_provider_id(message.account_id, "<m1@example.com>")
        assert found is not None and found.id == message.id

        updated = store.update_message(message.id, {"status": MessageStatus.REPLIED, "is_read": True})
        assert updated is not None
        assert store.get_message(message.id).status is MessageStatus.REPLIED
        assert store.count_messages(MessageFilters(is_read=True)) == 1

    def test_delete_message(self, store, make_message) -> None:
        """Test deletion reports whether a row was removed."""
        message = make_message("<m1@example.com>")
        store.save_message(message)

        assert store.delete_message(message.id) is True
        assert store.delete_message(message.id) is False

    def test_list_filters_and_order(self, store, make_message) -> None:
        """Test that listing is newest first and honours date filters."""
        base = datetime(2024, 3, 1, tzinfo=timezone.utc)
        for i in range(3):
            store.save_message(make_message(f"<m{i}@example.com>", date=base + timedelta(days=i)))

        listed = store.list_messages(MessageFilters(limit=None))
        assert [m.provider_message_id for m in listed] == [
            "<m2@example.com>",
            "<m1@example.com>",
            "<m0@example.com>",
        ]

        recent = store.list_messages(MessageFilters(since=base + timedelta(days=1)))
        assert len(recent) == 2

    def test_conversation_messages_oldest_first(self, store, make_message) -> None:
        """Test the ordering of a conversation's messages."""
        base = datetime(2024, 3, 1, tzinfo=timezone.utc)
        late = make_message("<late@example.com>", date=base + timedelta(hours=2))
        early = make_message("<early@example.com>", date=base)
        late.conversation_id = early.conversation_id = "conv-1"
        store.save_messages([late, early])

        messages = store.get_conversation_messages("conv-1")

        assert [m.provider_message_id for m in messages] == ["<early@example.com>", "<late@example.com>"]


class TestConversations:
    """Test suite for conversation persistence."""

    def test_thread_lookup_scoped_to_account(self, store, account) -> None:
        """Test lookup by any registered thread id within one account."""
        conversation = Conversation(
            account_id=account.id,
            client_id=account.client_id,
            thread_ids=["<a@example.com>", "<b@example.com>"],
        )
        store.save_conversation(conversation)

        assert store.get_conversation_by_thread_id(account.id, "<b@example.com>").id == conversation.id
        assert store.get_conversation_by_thread_id("other-account", "<b@example.com>") is None

    def test_update_replaces_thread_index(self, store, account) -> None:
        """Test that thread ids added by an update become searchable."""
        conversation = Conversation(
            account_id=account.id, client_id=account.client_id, thread_ids=["<a@example.com>"]
        )
        store.save_conversation(conversation)

        store.update_conversation(
            conversation.id, {"thread_ids": ["<a@example.com>", "<c@example.com>"]}
        )

        assert store.get_conversation_by_thread_id(account.id, "<c@example.com>") is not None

    def test_delete_conversation_clears_thread_index(self, store, account) -> None:
        """Test that deleted conversations no longer match thread ids."""
        conversation = Conversation(
            account_id=account.id, client_id=account.client_id, thread_ids=["<a@example.com>"]
        )
        store.save_conversation(conversation)

        assert store.delete_conversation(conversation.id) is True
        assert store.get_conversation_by_thread_id(account.id, "<a@example.com>") is None

    def test_list_filters(self, store, account) -> None:
        """Test status, search and ordering filters."""
        base = datetime(2024, 3, 1, tzinfo=timezone.utc)
        older = Conversation(
            account_id=account.id,
            client_id=account.client_id,
            subject="Invoice 42",
            last_message_at=base,
        )
        newer = Conversation(
            account_id=account.id,
            client_id=account.client_id,
            subject="Lunch",
            status=ConversationStatus.CLOSED,
            last_message_at=base + timedelta(days=1),
        )
        store.save_conversation(older)
        store.save_conversation(newer)

        assert [c.id for c in store.list_conversations(ConversationFilters())] == [newer.id, older.id]
        assert [c.id for c in store.list_conversations(ConversationFilters(search="invoice"))] == [older.id]
        assert store.count_conversations(ConversationFilters(status=ConversationStatus.CLOSED)) == 1


class TestSyncState:
    """Test suite for sync cursors."""

    def test_round_trip_and_clear(self, store, account) -> None:
        """Test saving, overwriting and clearing a cursor."""
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        store.save_sync_state(SyncState(account_id=account.id, last_uid=5, last_sync_at=now))
        store.save_sync_state(SyncState(account_id=account.id, last_uid=9, last_sync_at=now))

        state = store.get_sync_state(account.id)
        assert state is not None
        assert state.last_uid == 9
        assert state.last_sync_at == now

        store.clear_sync_state(account.id)
        assert store.get_sync_state(account.id) is None
