"""Conversation grouping and aggregate maintenance."""

from .service import ConversationService, RebuildReport

__all__ = ["ConversationService", "RebuildReport"]
