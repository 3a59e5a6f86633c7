"""
On-disk credential cache.

Keeps the last access credential between runs so a restart does not
prompt the user again while the token is still good. The file holds the
token and its expiry (epoch milliseconds) and is readable by the owner only.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path

from ..exceptions import StorageIOError
from ..local.file_ops import read_json, remove_file, write_json_atomic
from .types import DEFAULT_SAFETY_MARGIN, Credential

logger = logging.getLogger(__name__)


class CredentialCache:
    """File-backed cache for a single access credential."""

    def __init__(self, path: Path, margin: timedelta = DEFAULT_SAFETY_MARGIN):
        """Initialize the cache.

        Args:
            path: Cache file location
            margin: A cached credential expiring within this window is discarded
        """
        self.path = Path(path)
        self.margin = margin

    async def load(self, now: datetime | None = None) -> Credential | None:
        """Return the cached credential if it is still valid.

        Expired, nearly expired and unreadable cache files are deleted.
        """
        try:
            data = await read_json(self.path)
        except StorageIOError as e:
            logger.warning(f"Discarding unreadable credential cache: {e}")
            await self.clear()
            return None

        if data is None:
            return None

        try:
            credential = Credential.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed credential cache: {e}")
            await self.clear()
            return None

        if not credential.is_valid(now=now, margin=self.margin):
            logger.info("Cached credential expired, discarding")
            await self.clear()
            return None

        return credential

    async def save(self, credential: Credential) -> None:
        """Persist a credential (owner read/write only)."""
        await write_json_atomic(self.path, credential.to_dict(), indent=None, private=True)

    async def clear(self) -> None:
        """Delete the cache file if present."""
        await remove_file(self.path)
