"""
File operations for snapshot files and the credential cache.

Provides async read/write helpers with:
- Atomic writes using temp file + rename
- Optional owner-only permissions for secrets
"""

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary.

    Args:
        path: Directory path to ensure exists
    """
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def read_text(path: Path) -> str | None:
    """Read a UTF-8 text file.

    Returns:
        File content or None if the file doesn't exist
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            return await f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise StorageIOError("read_text", str(path), e) from e


async def read_json(path: Path) -> Any | None:
    """Read a JSON file.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON data or None if file doesn't exist or is empty
    """
    content = await read_text(path)
    if content is None or not content.strip():
        return None
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise StorageIOError("parse_json", str(path), e) from e


async def _write_atomic(path: Path, payload: bytes, suffix: str, private: bool) -> None:
    await ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=suffix)
    try:
        os.close(fd)
        if private:
            os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(payload)
            await f.flush()
            os.fsync(f.fileno())

        # Atomic rename
        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        # Clean up temp file on error
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise StorageIOError("write", str(path), e) from e


async def write_json_atomic(
    path: Path,
    data: Any,
    indent: int | None = 2,
    private: bool = False,
) -> None:
    """Write JSON file atomically using temp file + rename.

    Args:
        path: Target path for JSON file
        data: Data to serialize as JSON
        indent: JSON indentation (None for compact output)
        private: Restrict the file to owner read/write (0600)
    """
    try:
        payload = json.dumps(data, indent=indent, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise StorageIOError("serialize_json", str(path), e) from e
    await _write_atomic(path, payload, ".json", private)


async def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write a binary file atomically."""
    await _write_atomic(path, data, path.suffix or ".bin", private=False)


async def remove_file(path: Path) -> bool:
    """Remove a file if it exists.

    Args:
        path: Path to remove

    Returns:
        True if file was removed, False if it didn't exist
    """
    try:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            return True
        return False
    except OSError as e:
        raise StorageIOError("remove", str(path), e) from e
