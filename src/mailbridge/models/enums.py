"""Closed enumerations shared by the mailbridge records."""

from enum import Enum


class MessageStatus(str, Enum):
    """Lifecycle status of a single message."""

    NEW = "new"
    READ = "read"
    REPLIED = "replied"
    ARCHIVED = "archived"


class ConversationStatus(str, Enum):
    """Lifecycle status of a conversation."""

    OPEN = "open"
    CLOSED = "closed"
    ARCHIVED = "archived"


class ProviderType(str, Enum):
    """Mailbox provider behind an account."""

    IMAP = "imap"
    GMAIL = "gmail"
    MICROSOFT = "microsoft"


class AccountStatus(str, Enum):
    """Connection status of an account."""

    ACTIVE = "active"
    ERROR = "error"
    DISCONNECTED = "disconnected"
    PENDING = "pending"


class SyncErrorKind(str, Enum):
    """Classification of a failed sync call."""

    AUTHENTICATION = "authentication"
    CONNECTION = "connection"
    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_INACTIVE = "account_inactive"
    UNEXPECTED = "unexpected"


class SyncOutcome(str, Enum):
    """What a sync call achieved, as reported to callers."""

    INGESTED = "ingested"
    NOTHING_NEW = "nothing_new"
    UNREACHABLE = "unreachable"
    FAILED = "failed"
