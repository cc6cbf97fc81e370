"""Text helpers for subjects, previews and participant lists."""

from __future__ import annotations

import html
import re
from collections.abc import Iterable

from mailbridge.models import NO_SUBJECT, EmailAddress

# Reply/forward prefixes, including common localized forms, with an optional [n] counter.
RE_PREFIX = re.compile(r"^\s*(?:re|fwd|fw|aw|sv|vs|tr)\s*(?:\[\d+\])?\s*:\s*", re.IGNORECASE)
RE_REPLY = re.compile(r"^\s*re\s*:", re.IGNORECASE)

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_RE = re.compile(r"<(script|style)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_WS_RE = re.compile(r"\s+")


def normalize_subject(subject: str | None) -> str:
    """Strip every leading reply/forward prefix.

    >>> normalize_subject("Re: Re[2]: Project Update")
    'Project Update'
    """

    if not subject:
        return NO_SUBJECT
    s = subject.strip()
    while True:
        stripped = RE_PREFIX.sub("", s, count=1)
        if stripped == s:
            break
        s = stripped
    return s.strip() or NO_SUBJECT


def reply_subject(subject: str | None) -> str:
    """Prefix ``Re: `` unless the subject already starts with it."""

    s = (subject or "").strip()
    if RE_REPLY.match(s):
        return s
    return f"Re: {s}" if s else "Re:"


def html_to_text(value: str) -> str:
    value = _BLOCK_RE.sub(" ", value)
    value = re.sub(r"<br\s*/?>|</p>|</div>", "\n", value, flags=re.IGNORECASE)
    return html.unescape(_TAG_RE.sub(" ", value))


def create_snippet(body_text: str | None, max_length: int = 100, body_html: str | None = None) -> str:
    """Build a one-line preview: quoted lines dropped, whitespace collapsed, truncated."""

    source = body_text
    if not source and body_html:
        source = html_to_text(body_html)
    if not source:
        return ""

    lines = [line for line in source.splitlines() if not line.lstrip().startswith(">")]
    cleaned = _WS_RE.sub(" ", " ".join(lines)).strip()

    if len(cleaned) <= max_length:
        return cleaned
    return cleaned[:max_length] + "..."


def extract_participants(addresses: Iterable[EmailAddress]) -> list[EmailAddress]:
    """De-duplicate addresses case-insensitively, keeping the first occurrence."""

    seen: set[str] = set()
    result: list[EmailAddress] = []
    for addr in addresses:
        if not addr.address or addr.key in seen:
            continue
        seen.add(addr.key)
        result.append(addr)
    return result


def merge_participants(
    existing: list[EmailAddress], incoming: Iterable[EmailAddress]
) -> tuple[list[EmailAddress], bool]:
    """Append addresses not already present. Returns the merged list and whether it grew."""

    merged = extract_participants([*existing, *incoming])
    return merged, len(merged) > len(extract_participants(existing))
