from __future__ import annotations

import re

from ..store import RecordKey

_CANONICAL_INT_RE = re.compile(r"^(0|-?[1-9]\d*)$")


def to_document_key(key: RecordKey) -> str:
    if isinstance(key, bool):
        raise TypeError("boolean is not a record key")
    if isinstance(key, int):
        return str(key)
    text = str(key)
    if not text:
        raise ValueError("empty record key")
    return text


def from_document_key(key: str | int) -> RecordKey:
    """Map a remote document key back to a local identifier.

    Only keys that read back the same after `str(int(key))` become integers,
    so "7" maps to 7 while "007", "+5" and " 42 " stay opaque strings and
    later local edits go to the same document.
    """

    if isinstance(key, bool):
        raise TypeError("boolean is not a document key")
    if isinstance(key, int):
        return key
    text = str(key)
    if not text.strip():
        raise ValueError("empty document key")
    if _CANONICAL_INT_RE.match(text):
        return int(text)
    return text
