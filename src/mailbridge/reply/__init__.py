"""Reply composition."""

from .composer import ReplyComposer, build_reply_headers

__all__ = ["ReplyComposer", "build_reply_headers"]
