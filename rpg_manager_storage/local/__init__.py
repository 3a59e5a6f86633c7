"""
Local durable storage.

Key classes:
- LocalStore: SQLite-backed entity store, one table per collection
- file_ops: atomic JSON/binary file writes for snapshots and credentials
"""

from .file_ops import (
    read_json,
    read_text,
    remove_file,
    write_bytes_atomic,
    write_json_atomic,
)
from .store import LocalStore

__all__ = [
    "LocalStore",
    # Low-level file operations
    "read_text",
    "read_json",
    "write_json_atomic",
    "write_bytes_atomic",
    "remove_file",
]
