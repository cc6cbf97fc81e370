"""Message lifecycle."""

from .service import MessageService

__all__ = ["MessageService"]
