"""Raw message parsing and building."""

from .building import build_mime_message, generate_message_id
from .parsing import ParsedAttachment, ParsedMail, parse_message_ids, parse_raw_message

__all__ = [
    "ParsedAttachment",
    "ParsedMail",
    "build_mime_message",
    "generate_message_id",
    "parse_message_ids",
    "parse_raw_message",
]
