"""Persistent storage.

``MailStore`` is the interface the engine consumes; ``SqliteMailStore`` is
the bundled implementation.
"""

from .base import MailStore
from .repository import SqliteMailStore

__all__ = ["MailStore", "SqliteMailStore"]
