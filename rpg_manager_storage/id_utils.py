"""ID and filename helpers for entities.

Entity IDs are millisecond timestamps rendered as strings, assigned once at
creation and never changed afterwards.
"""

from __future__ import annotations

import re
import threading
import time

_SAFE_NAME_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)

_lock = threading.Lock()
_last_id = 0


def new_entity_id(now_ms: int | None = None) -> str:
    """Generate a timestamp-derived entity ID.

    IDs are strictly increasing within a process even when two are
    requested in the same millisecond.
    """
    global _last_id

    candidate = now_ms if now_ms is not None else time.time_ns() // 1_000_000
    with _lock:
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
    return str(candidate)


def safe_name(text: str | None, fallback: str) -> str:
    """Turn a display name into a lowercase filename component."""
    if not text:
        return fallback
    return _SAFE_NAME_RE.sub("_", str(text)).lower()


def extension_for_mime(mime_type: str | None, default: str = "png") -> str:
    """Get the file extension for a MIME type (``image/jpeg`` -> ``jpeg``)."""
    if not mime_type or "/" not in mime_type:
        return default
    subtype = mime_type.split("/", 1)[1]
    return subtype or default
