"""Text cleanup helpers shared by the source clients and extractors."""

from __future__ import annotations

import html
import re

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def strip_html(text: str | None) -> str:
    """Drop tags, decode entities and collapse whitespace."""
    if not text:
        return ""
    return collapse_whitespace(html.unescape(_TAG_RE.sub(" ", text)))


def snippet(text: str, start: int, end: int, *, radius: int) -> str:
    """Return ``text[start - radius:end + radius]`` with ``...`` on truncated ends."""
    left = max(0, start - radius)
    right = min(len(text), end + radius)
    excerpt = collapse_whitespace(text[left:right])
    if left > 0:
        excerpt = f"...{excerpt}"
    if right < len(text):
        excerpt = f"{excerpt}..."
    return excerpt
