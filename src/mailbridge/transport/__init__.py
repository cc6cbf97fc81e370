"""Mailbox transports.

The engine only depends on the ``MailboxTransport`` interface. ``get_transport``
returns the bundled implementation for an account's provider.
"""

from __future__ import annotations

from mailbridge.config import Settings
from mailbridge.exceptions import ConfigurationError
from mailbridge.models import ConnectedAccount, ProviderType

from .base import MailboxTransport, TransportFactory
from .imap import ImapSmtpTransport


def get_transport(account: ConnectedAccount, settings: Settings | None = None) -> MailboxTransport:
    """Return the transport for an account's provider.

    Raises:
        ConfigurationError: If the provider has no transport.
    """

    if account.provider is ProviderType.IMAP:
        return ImapSmtpTransport(settings)
    if account.provider in (ProviderType.GMAIL, ProviderType.MICROSOFT):
        raise ConfigurationError(f"Provider {account.provider.value} is not supported yet")
    raise ConfigurationError(f"Unknown provider: {account.provider}")


__all__ = ["ImapSmtpTransport", "MailboxTransport", "TransportFactory", "get_transport"]
