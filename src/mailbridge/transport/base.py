"""Mailbox transport interface consumed by the engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from mailbridge.models import (
    ConnectedAccount,
    DeliveryConfirmation,
    FetchRequest,
    OutgoingMail,
    RawMailItem,
)


class MailboxTransport(Protocol):
    """Fetch raw messages from and send messages through a mailbox.

    Implementations bound their own connection and request time and raise
    ``AuthenticationError`` / ``MailboxConnectionError`` rather than hang.
    """

    async def fetch_since(
        self, account: ConnectedAccount, request: FetchRequest
    ) -> list[RawMailItem]:
        """Return at most ``request.max_count`` messages in ascending UID order."""
        ...

    async def send(self, account: ConnectedAccount, mail: OutgoingMail) -> DeliveryConfirmation:
        """Deliver ``mail`` and confirm the Message-ID it was sent with."""
        ...


TransportFactory = Callable[[ConnectedAccount], MailboxTransport]
