"""Explicit engine context passed to every component."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field

from mailbridge.config import Settings
from mailbridge.models import ConnectedAccount
from mailbridge.storage.base import MailStore
from mailbridge.transport.base import MailboxTransport, TransportFactory


@dataclass
class EngineContext:
    """Store, transport and settings handles shared by the engine components.

    ``account_lock`` serializes sync and send calls for one account within
    this process; it does not coordinate separate processes.
    """

    settings: Settings
    store: MailStore
    transport_factory: TransportFactory
    _locks: defaultdict[str, asyncio.Lock] = field(
        default_factory=lambda: defaultdict(asyncio.Lock), init=False, repr=False
    )

    def transport_for(self, account: ConnectedAccount) -> MailboxTransport:
        return self.transport_factory(account)

    def account_lock(self, account_id: str) -> asyncio.Lock:
        return self._locks[account_id]
