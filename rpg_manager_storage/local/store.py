"""
SQLite-backed local entity store.

One database file holds one table per collection. Each row is an entity
keyed by its ``id`` and stored as JSON. Only the declared image fields
(including grimoire page images) hold bytes; they are stored as base64 text
at their known paths, so no other value is ever reinterpreted on read.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from ..codec import decode, encode
from ..config import StorageSettings
from ..events import DataChanged, EventBus
from ..exceptions import StoreUnavailableError, ValidationError
from ..schema import (
    COLLECTIONS,
    KEY_FIELD,
    STORE_VERSION,
    map_binary_fields,
    validate_binary_pairs,
    validate_collection,
    validate_key,
)

logger = logging.getLogger(__name__)

class LocalStore:
    """Durable key/value store for the six entity collections.

    Usage:
        >>> store = await LocalStore.create(settings)
        >>> await store.put("rpgItems", {"id": "1", "name": "Sword"})
        >>> item = await store.get("rpgItems", "1")
        >>> await store.close()

    Every operation raises StoreUnavailableError until ``open()`` has
    completed. Writes are committed before the call returns.
    """

    def __init__(self, db_path: str | Path = ":memory:", events: EventBus | None = None):
        """Initialize the store (does not touch the database yet).

        Args:
            db_path: SQLite file path, or ":memory:" for a throwaway store
            events: Optional bus receiving DataChanged events
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path).expanduser()
        self.events = events
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @classmethod
    async def create(
        cls,
        settings: StorageSettings | None = None,
        events: EventBus | None = None,
    ) -> LocalStore:
        """Create and open a store from settings."""
        if settings is None:
            settings = StorageSettings.from_env()
        store = cls(settings.db_path, events)
        await store.open()
        return store

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> LocalStore:
        """Open the database, creating the file and tables on first use.

        Idempotent: calling it on an open store is a no-op.

        Raises:
            StoreUnavailableError: If the engine cannot be opened
        """
        if self._conn is not None:
            return self

        conn: aiosqlite.Connection | None = None
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            conn = await aiosqlite.connect(str(self.db_path))
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_meta (
                    key TEXT NOT NULL PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            version = await self._read_version(conn)
            if version > STORE_VERSION:
                raise StoreUnavailableError(
                    str(self.db_path),
                    f"store version {version} is newer than supported version {STORE_VERSION}",
                )

            for collection in COLLECTIONS:
                await conn.execute(
                    f'CREATE TABLE IF NOT EXISTS "{collection}" ('
                    f"{KEY_FIELD} TEXT NOT NULL PRIMARY KEY, body TEXT NOT NULL)"
                )

            if version < STORE_VERSION:
                await conn.execute(
                    "INSERT OR REPLACE INTO schema_meta (key, value) VALUES ('version', ?)",
                    (str(STORE_VERSION),),
                )
                logger.info(f"Local store schema upgraded from v{version} to v{STORE_VERSION}")

            await conn.commit()
        except StoreUnavailableError:
            if conn is not None:
                await conn.close()
            raise
        except (sqlite3.Error, OSError) as e:
            if conn is not None:
                await conn.close()
            raise StoreUnavailableError(str(self.db_path), "could not open store", e) from e

        self._conn = conn
        logger.info(f"Local store opened: {self.db_path}")
        return self

    @staticmethod
    async def _read_version(conn: aiosqlite.Connection) -> int:
        async with conn.execute("SELECT value FROM schema_meta WHERE key = 'version'") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("Local store closed")

    async def __aenter__(self) -> LocalStore:
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _require_open(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreUnavailableError(str(self.db_path), "store is not open")
        return self._conn

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the open connection, mapping engine errors to StoreUnavailableError."""
        conn = self._require_open()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(self.db_path), f"{operation} failed", e) from e

    def _prepare(self, collection: str, entity: dict[str, Any]) -> tuple[str, str]:
        if not isinstance(entity, dict):
            raise ValidationError("entity", "entity must be a mapping", type(entity).__name__)
        key = validate_key(entity.get(KEY_FIELD))
        validate_binary_pairs(collection, entity)
        try:
            body = map_binary_fields(collection, entity, encode)
            return key, json.dumps(body, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ValidationError("entity", f"entity is not serializable: {e}", key) from e

    @staticmethod
    def _load(collection: str, body: str) -> dict[str, Any]:
        return map_binary_fields(collection, json.loads(body), decode)

    def _publish(self, collection: str, key: str | None) -> None:
        if self.events is not None:
            self.events.publish(DataChanged(collection=collection, key=key))

    # =========================================================================
    # Entity operations
    # =========================================================================

    async def put(self, collection: str, entity: dict[str, Any]) -> str:
        """Insert or overwrite an entity by its ``id``.

        Returns:
            The entity key
        """
        validate_collection(collection)
        key, body = self._prepare(collection, entity)

        async with self._write_lock, self._guard("put") as conn:
            await conn.execute(
                f'INSERT INTO "{collection}" ({KEY_FIELD}, body) VALUES (?, ?) '
                f"ON CONFLICT({KEY_FIELD}) DO UPDATE SET body = excluded.body",
                (key, body),
            )
            await conn.commit()

        self._publish(collection, key)
        return key

    async def get(
        self,
        collection: str,
        key: str | None = None,
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Get one entity by key, or every entity when no key is given.

        Returns:
            The entity or None when a key is given; a list (unordered) otherwise
        """
        validate_collection(collection)

        async with self._guard("get") as conn:
            if key is not None:
                async with conn.execute(
                    f'SELECT body FROM "{collection}" WHERE {KEY_FIELD} = ?', (key,)
                ) as cursor:
                    row = await cursor.fetchone()
                return self._load(collection, row[0]) if row else None

            async with conn.execute(f'SELECT body FROM "{collection}"') as cursor:
                rows = await cursor.fetchall()
        return [self._load(collection, row[0]) for row in rows]

    async def remove(self, collection: str, key: str) -> None:
        """Delete an entity; deleting a missing key is not an error."""
        validate_collection(collection)

        async with self._write_lock, self._guard("remove") as conn:
            await conn.execute(f'DELETE FROM "{collection}" WHERE {KEY_FIELD} = ?', (key,))
            await conn.commit()

        self._publish(collection, key)

    async def clear(self, collection: str) -> None:
        """Delete every entity of a collection."""
        validate_collection(collection)

        async with self._write_lock, self._guard("clear") as conn:
            await conn.execute(f'DELETE FROM "{collection}"')
            await conn.commit()

        self._publish(collection, None)

    async def replace_collection(
        self,
        collection: str,
        entities: Iterable[dict[str, Any]],
    ) -> int:
        """Clear a collection and insert entities in a single transaction.

        Returns:
            Number of entities written
        """
        counts = await self.replace_collections({collection: entities})
        return counts[collection]

    async def replace_collections(
        self,
        collections: Mapping[str, Iterable[dict[str, Any]]],
    ) -> dict[str, int]:
        """Replace several collections at once, committing once.

        Every entity is validated before anything is deleted. If the engine
        fails partway, the transaction is rolled back and every collection
        keeps its previous contents.

        Returns:
            Number of entities written per collection
        """
        prepared: dict[str, list[tuple[str, str]]] = {}
        for collection, entities in collections.items():
            validate_collection(collection)
            prepared[collection] = [self._prepare(collection, entity) for entity in entities]

        async with self._write_lock, self._guard("replace_collections") as conn:
            try:
                for collection, rows in prepared.items():
                    await conn.execute(f'DELETE FROM "{collection}"')
                    await conn.executemany(
                        f'INSERT INTO "{collection}" ({KEY_FIELD}, body) VALUES (?, ?) '
                        f"ON CONFLICT({KEY_FIELD}) DO UPDATE SET body = excluded.body",
                        rows,
                    )
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

        for collection in prepared:
            self._publish(collection, None)
        return {collection: len(rows) for collection, rows in prepared.items()}

    async def count(self, collection: str) -> int:
        """Count entities in a collection."""
        validate_collection(collection)

        async with self._guard("count") as conn:
            async with conn.execute(f'SELECT COUNT(*) FROM "{collection}"') as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0
