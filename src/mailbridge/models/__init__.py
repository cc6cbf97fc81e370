"""Data models for mailbridge.

This package contains Pydantic models for data validation and serialization.
"""

from mailbridge.models.account import ConnectedAccount
from mailbridge.models.compose import ReplyContent, ReplyResult, SentMessage
from mailbridge.models.conversation import (
    Conversation,
    ConversationFilters,
    ConversationWithMessages,
)
from mailbridge.models.enums import (
    AccountStatus,
    ConversationStatus,
    MessageStatus,
    ProviderType,
    SyncErrorKind,
    SyncOutcome,
)
from mailbridge.models.message import (
    NO_SUBJECT,
    AttachmentInfo,
    EmailAddress,
    MessageFilters,
    UnifiedMessage,
    new_id,
    utc_now,
)
from mailbridge.models.sync import SyncResult, SyncState, SyncSummary
from mailbridge.models.transport import (
    DeliveryConfirmation,
    FetchRequest,
    OutgoingMail,
    RawMailItem,
)

__all__ = [
    "NO_SUBJECT",
    "AccountStatus",
    "AttachmentInfo",
    "ConnectedAccount",
    "Conversation",
    "ConversationFilters",
    "ConversationStatus",
    "ConversationWithMessages",
    "DeliveryConfirmation",
    "EmailAddress",
    "FetchRequest",
    "MessageFilters",
    "MessageStatus",
    "OutgoingMail",
    "ProviderType",
    "RawMailItem",
    "ReplyContent",
    "ReplyResult",
    "SentMessage",
    "SyncErrorKind",
    "SyncOutcome",
    "SyncResult",
    "SyncState",
    "SyncSummary",
    "UnifiedMessage",
    "new_id",
    "utc_now",
]
