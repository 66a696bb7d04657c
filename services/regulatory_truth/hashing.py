"""
Content Hashing
===============

Change-detection and immutability hashes for fetched content.

- Structured content (JSON objects/arrays, or a JSON content type) is
  hashed over its raw bytes: every byte matters for the audit trail.
- HTML / text is normalized first (comments, script and style blocks,
  whitespace runs, unix timestamps and 32+ hex session-like tokens are
  removed) so cosmetic page churn does not register as a change.

Version: 0.1.0
"""

import hashlib
import re
from dataclasses import dataclass


_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")
_UNIX_TIMESTAMP_RE = re.compile(r"\b\d{10,13}\b")
_HEX_TOKEN_RE = re.compile(r"[a-f0-9]{32,}", re.IGNORECASE)

_STRUCTURED_HINTS = ("json", "ld+json")


def normalize_html_content(content: str) -> str:
    """
    Normalize HTML/text for change detection (never for immutability).

    Args:
        content: Raw page content

    Returns:
        Normalized string
    """
    text = _COMMENT_RE.sub("", content)
    text = _SCRIPT_RE.sub("", text)
    text = _STYLE_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text)
    text = _UNIX_TIMESTAMP_RE.sub("", text)
    text = _HEX_TOKEN_RE.sub("", text)
    return text.strip()


def hash_raw_content(content: str | bytes) -> str:
    """SHA-256 over the exact bytes (UTF-8 for text)."""
    data = content.encode("utf-8") if isinstance(content, str) else content
    return hashlib.sha256(data).hexdigest()


def is_structured(content: str, content_type_hint: str | None = None) -> bool:
    """Whether content should be hashed byte-for-byte."""
    if content_type_hint:
        hint = content_type_hint.lower()
        if any(marker in hint for marker in _STRUCTURED_HINTS):
            return True

    stripped = content.strip()
    return (stripped.startswith("{") and stripped.endswith("}")) or (
        stripped.startswith("[") and stripped.endswith("]")
    )


def hash_content(content: str, content_type_hint: str | None = None) -> str:
    """
    Hash content with content-type awareness.

    Args:
        content: The content to hash
        content_type_hint: MIME type or short hint ("json", "html")

    Returns:
        Hex SHA-256 digest
    """
    if is_structured(content, content_type_hint):
        return hash_raw_content(content)
    return hash_raw_content(normalize_html_content(content))


@dataclass(frozen=True)
class ChangeDetection:
    """Result of comparing fetched content against a stored hash."""

    has_changed: bool
    new_hash: str
    previous_hash: str | None
    # Any difference is treated as significant for now
    is_significant: bool


def detect_change(
    new_content: str,
    previous_hash: str | None,
    content_type_hint: str | None = None,
) -> ChangeDetection:
    """
    Check whether content changed relative to a previously stored hash.

    A missing previous hash (first fetch) counts as a change.
    """
    new_hash = hash_content(new_content, content_type_hint)
    has_changed = previous_hash != new_hash
    return ChangeDetection(
        has_changed=has_changed,
        new_hash=new_hash,
        previous_hash=previous_hash,
        is_significant=has_changed,
    )
