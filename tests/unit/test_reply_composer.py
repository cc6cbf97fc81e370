"""Unit tests for composing and sending replies."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from mailbridge.conversations import ConversationService
from mailbridge.exceptions import (
    AccountInactiveError,
    DeliveryError,
    MessageNotFoundError,
)
from mailbridge.messages import MessageService
from mailbridge.models import (
    AccountStatus,
    EmailAddress,
    MessageFilters,
    MessageStatus,
    ReplyContent,
)
from mailbridge.reply import ReplyComposer, build_reply_headers

BASE = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def conversations(context) -> ConversationService:
    return ConversationService(context)


@pytest.fixture
def composer(context, conversations) -> ReplyComposer:
    return ReplyComposer(context, conversations)


@pytest.fixture
def stored_message(store, conversations, make_message):
    """A synced, unread incoming message with its conversation."""

    def _store(provider_message_id: str = "<msg-id>", **kwargs):
        message = make_message(provider_message_id, **kwargs)
        store.save_message(message)
        conversations.assign_message(message)
        return store.get_message(message.id)

    return _store


class TestBuildReplyHeaders:
    """Test suite for threading header construction."""

    def test_first_reply(self, make_message) -> None:
        """Test that a target without references starts the chain with itself."""
        in_reply_to, references = build_reply_headers(make_message("<msg-id>"))

        assert in_reply_to == "<msg-id>"
        assert references == ["<msg-id>"]

    def test_chain_is_append_only(self, make_message) -> None:
        """Test that the target's references are kept in order and extended."""
        target = make_message("<c>", in_reply_to="<b>", references=["<a>", "<b>"])

        _, references = build_reply_headers(target)

        assert references == ["<a>", "<b>", "<c>"]
        assert target.references == ["<a>", "<b>"]


class TestSendReply:
    """Test suite for ReplyComposer.send_reply."""

    @pytest.mark.asyncio
    async def test_reply_threads_into_conversation(
        self, composer, store, transport, stored_message
    ) -> None:
        """Test the sent headers, stored copy and target status."""
        target = stored_message("<msg-id>")

        sent = await composer.send_reply(target.id, ReplyContent(body_text="Thanks!"))

        mail = transport.sent[0]
        assert mail.in_reply_to == "<msg-id>"
        assert mail.references == ["<msg-id>"]
        assert mail.subject == "Re: Project Update"
        assert [a.address for a in mail.to] == ["alice@example.com"]
        assert mail.sender.address == "me@example.com"

        outgoing = store.get_message(sent.message.id)
        assert outgoing.is_outgoing is True
        assert outgoing.is_read is True
        assert outgoing.status is MessageStatus.REPLIED
        assert outgoing.thread_id == "<msg-id>"
        assert outgoing.provider_message_id == mail.message_id
        assert sent.sent_message_id == mail.message_id

        assert sent.conversation_id == target.conversation_id
        conversation = store.get_conversation(target.conversation_id)
        assert conversation.message_count == 2
        assert conversation.unread_count == 0
        assert mail.message_id in conversation.thread_ids

        updated_target = store.get_message(target.id)
        assert updated_target.status is MessageStatus.REPLIED
        assert updated_target.is_read is True

    @pytest.mark.asyncio
    async def test_reply_extends_existing_chain(self, composer, transport, stored_message) -> None:
        """Test that replying deep in a thread keeps the full chain."""
        target = stored_message("<msg-id>", references=["<root>"])

        await composer.send_reply(target.id, ReplyContent(body_text="ok"))

        assert transport.sent[0].references == ["<root>", "<msg-id>"]
        assert transport.sent[0].in_reply_to == "<msg-id>"

    @pytest.mark.asyncio
    async def test_reply_to_header_and_overrides(self, composer, store, transport, make_message, conversations) -> None:
        """Test the Reply-To default and explicit subject and recipients."""
        message = make_message("<msg-id>").model_copy(
            update={"reply_to": EmailAddress(address="support@example.com")}
        )
        store.save_message(message)
        conversations.assign_message(message)

        await composer.send_reply(message.id, ReplyContent(body_text="a"))
        await composer.send_reply(
            message.id,
            ReplyContent(
                body_text="b",
                subject="RE: Different",
                to=[EmailAddress(address="boss@example.com")],
            ),
        )

        assert [a.address for a in transport.sent[0].to] == ["support@example.com"]
        assert transport.sent[1].subject == "RE: Different"
        assert [a.address for a in transport.sent[1].to] == ["boss@example.com"]

    @pytest.mark.asyncio
    async def test_reply_reopens_closed_conversation(
        self, composer, store, conversations, stored_message
    ) -> None:
        """Test that replying counts as activity on a closed conversation."""
        target = stored_message("<msg-id>")
        conversations.close_conversation(target.conversation_id)

        await composer.send_reply(target.id, ReplyContent(body_text="back again"))

        assert store.get_conversation(target.conversation_id).status.value == "open"

    @pytest.mark.asyncio
    async def test_missing_target_sends_nothing(self, composer, store, transport) -> None:
        """Test that an unknown target fails before anything is sent."""
        with pytest.raises(MessageNotFoundError):
            await composer.send_reply("missing", ReplyContent(body_text="hi"))

        assert transport.sent == []
        assert store.count_messages(MessageFilters()) == 0

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, composer, store, transport, stored_message) -> None:
        """Test that a refused send stores nothing and leaves the target unchanged."""
        target = stored_message("<msg-id>")
        transport.send_error = DeliveryError("recipient refused")

        with pytest.raises(DeliveryError):
            await composer.send_reply(target.id, ReplyContent(body_text="hi"))

        assert store.count_messages(MessageFilters()) == 1
        assert store.get_message(target.id).status is MessageStatus.NEW

    @pytest.mark.asyncio
    async def test_inactive_account_rejected(self, composer, store, transport, account, stored_message) -> None:
        """Test that a disconnected account cannot send."""
        target = stored_message("<msg-id>")
        store.update_account(account.id, {"status": AccountStatus.DISCONNECTED})

        with pytest.raises(AccountInactiveError):
            await composer.send_reply(target.id, ReplyContent(body_text="hi"))

        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_read_while_waiting_for_lock(
        self, composer, context, store, conversations, stored_message
    ) -> None:
        """Test that a target read during a concurrent call is not counted twice."""
        target = stored_message("<msg-id>")
        stored_message("<follow-up>", in_reply_to="<msg-id>")
        assert store.get_conversation(target.conversation_id).unread_count == 2

        lock = context.account_lock(target.account_id)
        await lock.acquire()
        task = asyncio.create_task(composer.send_reply(target.id, ReplyContent(body_text="hi")))
        await asyncio.sleep(0)
        MessageService(context, conversations).mark_as_read(target.id)
        lock.release()
        await task

        assert store.get_conversation(target.conversation_id).unread_count == 1


class TestSendMessage:
    """Test suite for ReplyComposer.send_message."""

    @pytest.mark.asyncio
    async def test_new_message_starts_conversation(self, composer, store, transport, account) -> None:
        """Test that a fresh message has no threading headers and its own conversation."""
        sent = await composer.send_message(
            account.id,
            ReplyContent(
                to=[EmailAddress(address="new@example.com")],
                subject="Kickoff",
                body_text="Let's start",
            ),
        )

        mail = transport.sent[0]
        assert mail.in_reply_to is None
        assert mail.references == []
        assert mail.subject == "Kickoff"

        conversation = store.get_conversation(sent.conversation_id)
        assert conversation.thread_ids == [mail.message_id]
        assert conversation.message_count == 1
        assert conversation.unread_count == 0
        assert sent.message.status is MessageStatus.READ
