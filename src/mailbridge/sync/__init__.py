"""Incremental mailbox synchronization."""

from .normalizer import normalize_message, resolve_thread_id
from .orchestrator import SyncOrchestrator

__all__ = ["SyncOrchestrator", "normalize_message", "resolve_thread_id"]
