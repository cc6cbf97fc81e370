"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import format_datetime

import pytest

from mailbridge.config import Settings
from mailbridge.context import EngineContext
from mailbridge.models import (
    ConnectedAccount,
    DeliveryConfirmation,
    EmailAddress,
    FetchRequest,
    OutgoingMail,
    RawMailItem,
    UnifiedMessage,
)
from mailbridge.storage import SqliteMailStore
from mailbridge.sync.normalizer import resolve_thread_id


class FakeTransport:
    """Scripted in-memory mailbox.

    ``items`` behaves like the server side of an IMAP folder: fetches return
    UIDs above the cursor in ascending order, capped at ``max_count``.
    """

    def __init__(self) -> None:
        self.items: list[RawMailItem] = []
        self.requests: list[FetchRequest] = []
        self.sent: list[OutgoingMail] = []
        self.fetch_error: Exception | None = None
        self.send_error: Exception | None = None

    def deliver(self, uid: int, source: bytes, flags: list[str] | None = None) -> None:
        self.items.append(RawMailItem(uid=uid, source=source, flags=flags or []))

    async def fetch_since(
        self, account: ConnectedAccount, request: FetchRequest
    ) -> list[RawMailItem]:
        self.requests.append(request)
        if self.fetch_error is not None:
            raise self.fetch_error
        items = sorted(self.items, key=lambda i: i.uid)
        if request.after_uid is not None:
            items = [i for i in items if i.uid > request.after_uid]
        return items[: request.max_count]

    async def send(self, account: ConnectedAccount, mail: OutgoingMail) -> DeliveryConfirmation:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(mail)
        return DeliveryConfirmation(message_id=mail.message_id, accepted=mail.recipients())


@pytest.fixture
def mock_settings(tmp_path) -> Settings:
    """Provide settings pointing at a temporary database."""
    return Settings(
        db_path=tmp_path / "mailbridge.sqlite3",
        connect_retries=0,
        connect_retry_delay=0.0,
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def store(mock_settings: Settings) -> SqliteMailStore:
    """Provide an initialized SQLite store."""
    repo = SqliteMailStore(mock_settings.db_path)
    repo.initialize()
    return repo


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def context(mock_settings: Settings, store: SqliteMailStore, transport: FakeTransport) -> EngineContext:
    """Provide an engine context wired to the fake transport."""
    return EngineContext(
        settings=mock_settings,
        store=store,
        transport_factory=lambda account: transport,
    )


@pytest.fixture
def account(store: SqliteMailStore) -> ConnectedAccount:
    """Provide a stored, active IMAP account."""
    acct = ConnectedAccount(
        client_id="client-1",
        email_address="me@example.com",
        display_name="Me",
        imap_host="imap.example.com",
        smtp_host="smtp.example.com",
        username="me@example.com",
        password_env="MAILBRIDGE_TEST_PASSWORD",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    store.save_account(acct)
    return acct


@pytest.fixture
def raw_message() -> Callable[..., bytes]:
    """Provide a builder for raw RFC 5322 messages."""

    def _build(
        message_id: str | None = "<m1@example.com>",
        *,
        subject: str = "Project Update",
        sender: str = "Alice <alice@example.com>",
        to: str = "me@example.com",
        cc: str | None = None,
        reply_to: str | None = None,
        date: datetime | None = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
        in_reply_to: str | None = None,
        references: list[str] | None = None,
        body: str = "Hello there",
        html: str | None = None,
    ) -> bytes:
        msg = EmailMessage()
        msg["From"] = sender
        msg["To"] = to
        if cc:
            msg["Cc"] = cc
        if reply_to:
            msg["Reply-To"] = reply_to
        msg["Subject"] = subject
        if date is not None:
            msg["Date"] = format_datetime(date)
        if message_id is not None:
            msg["Message-ID"] = message_id
        if in_reply_to:
            msg["In-Reply-To"] = in_reply_to
        if references:
            msg["References"] = " ".join(references)
        msg.set_content(body)
        if html:
            msg.add_alternative(html, subtype="html")
        return msg.as_bytes()

    return _build


@pytest.fixture
def make_message(account: ConnectedAccount) -> Callable[..., UnifiedMessage]:
    """Provide a builder for normalized messages belonging to ``account``."""

    def _build(
        provider_message_id: str,
        *,
        in_reply_to: str | None = None,
        references: list[str] | None = None,
        date: datetime = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
        sender: str = "alice@example.com",
        to: list[str] | None = None,
        subject: str = "Project Update",
        body_text: str = "Hello there",
        is_read: bool = False,
    ) -> UnifiedMessage:
        refs = list(references or [])
        return UnifiedMessage(
            account_id=account.id,
            client_id=account.client_id,
            provider_message_id=provider_message_id,
            thread_id=resolve_thread_id(provider_message_id, in_reply_to, refs),
            in_reply_to=in_reply_to,
            references=refs,
            sender=EmailAddress(address=sender),
            to=[EmailAddress(address=a) for a in (to or [account.email_address])],
            subject=subject,
            body_text=body_text,
            date=date,
            is_read=is_read,
        )

    return _build
