"""mailbridge - multi-tenant mailbox synchronization and threading engine.

This package connects IMAP/SMTP mailboxes, pulls new mail incrementally,
normalizes it into a common record, groups related messages into
conversations, and sends correctly-threaded replies.
"""

__version__ = "0.1.0"

from mailbridge.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
