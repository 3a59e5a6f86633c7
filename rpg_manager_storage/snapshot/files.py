"""
Local file import/export.

Besides the cloud backup, the store can be exported to and restored from a
JSON file on disk, single entities can be shared as standalone JSON files,
and every stored image can be bundled into a zip archive.
"""

from __future__ import annotations

import asyncio
import io
import logging
import zipfile
from pathlib import Path
from typing import Any

from ..exceptions import FormatError, StorageIOError
from ..id_utils import extension_for_mime, new_entity_id, safe_name
from ..local.file_ops import read_text, write_bytes_atomic, write_json_atomic
from ..local.store import LocalStore
from ..schema import (
    ATTACKS,
    CHARACTERS,
    GRIMOIRES,
    ITEMS,
    KEY_FIELD,
    PAGE_ENTRIES_FIELD,
    SPELLS,
    validate_collection,
)
from .serializer import (
    ImportSummary,
    decode_entity,
    encode_entity,
    export_snapshot,
    import_snapshot,
    parse_snapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_NAME = "rpg_cards_backup.json"
DEFAULT_ARCHIVE_NAME = "rpg_backup_images.zip"

# Archive folder per collection holding loose images
ARCHIVE_FOLDERS = {
    CHARACTERS: "character_images",
    SPELLS: "spell_ability_images",
    ITEMS: "item_images",
    ATTACKS: "attack_images",
}
GRIMOIRE_FOLDER = "grimoire_images"


async def export_to_file(store: LocalStore, path: Path) -> int:
    """Write a full snapshot of the store to a JSON file.

    Returns:
        Number of entities exported
    """
    document = await export_snapshot(store)
    await write_json_atomic(Path(path), document, indent=2)
    total = sum(len(items) for items in document.values())
    logger.info(f"Exported {total} entities to {path}")
    return total


async def import_from_file(store: LocalStore, path: Path) -> ImportSummary:
    """Restore the store from a snapshot file written by :func:`export_to_file`.

    Raises:
        StorageIOError: If the file cannot be read
        FormatError: If the content is not a valid snapshot
    """
    content = await read_text(Path(path))
    if content is None:
        raise StorageIOError("import", str(path), FileNotFoundError(f"File not found: {path}"))
    return await import_snapshot(store, parse_snapshot(content))


def export_entity(collection: str, entity: dict[str, Any]) -> dict[str, Any]:
    """Build a standalone, JSON-safe share document for one entity."""
    validate_collection(collection)
    return encode_entity(collection, entity)


async def import_entity(store: LocalStore, collection: str, document: Any) -> dict[str, Any]:
    """Store a shared entity document as a new entity.

    The imported entity always receives a fresh ID so it never overwrites
    the entity it was exported from.

    Raises:
        FormatError: If the document is not an exported entity
    """
    validate_collection(collection)
    if not isinstance(document, dict) or KEY_FIELD not in document:
        raise FormatError("Invalid entity file: expected an object with an id")

    entity = decode_entity(collection, {**document, KEY_FIELD: new_entity_id()})
    await store.put(collection, entity)
    logger.info(f"Imported entity {entity[KEY_FIELD]} into {collection}")
    return entity


def _unique(name: str, used: set[str]) -> str:
    if name not in used:
        used.add(name)
        return name
    stem, dot, ext = name.rpartition(".")
    counter = 2
    while f"{stem}_{counter}{dot}{ext}" in used:
        counter += 1
    unique = f"{stem}_{counter}{dot}{ext}"
    used.add(unique)
    return unique


def _collect_images(snapshot: dict[str, list[dict[str, Any]]]) -> list[tuple[str, bytes]]:
    """List (archive path, bytes) pairs for every stored image."""
    files: list[tuple[str, bytes]] = []
    used: set[str] = set()

    for collection, folder in ARCHIVE_FOLDERS.items():
        for item in snapshot.get(collection, []):
            fallback = f"{folder}_unnamed_{item[KEY_FIELD]}"
            base = safe_name(item.get("name") or item.get("title"), fallback)
            if item.get("image") and item.get("imageMimeType"):
                name = f"{folder}/{base}_image.{extension_for_mime(item['imageMimeType'])}"
                files.append((_unique(name, used), item["image"]))
            background = item.get("backgroundImage")
            if collection == CHARACTERS and background and item.get("backgroundMimeType"):
                ext = extension_for_mime(item["backgroundMimeType"])
                name = f"{folder}/{base}_background.{ext}"
                files.append((_unique(name, used), background))

    for grimoire in snapshot.get(GRIMOIRES, []):
        title = safe_name(grimoire.get("title"), "untitled_grimoire")
        volume = safe_name(grimoire.get("vol"), "")
        folder = f"{GRIMOIRE_FOLDER}/{title}_{volume}" if volume else f"{GRIMOIRE_FOLDER}/{title}"
        for index, entry in enumerate(grimoire.get(PAGE_ENTRIES_FIELD) or []):
            if entry.get("image") and entry.get("imageMimeType"):
                subtitle = safe_name(entry.get("subtitle"), "no_subtitle")
                ext = extension_for_mime(entry["imageMimeType"])
                name = f"{folder}/page_{index + 1:02d}_{subtitle}.{ext}"
                files.append((_unique(name, used), entry["image"]))

    return files


def _build_archive(files: list[tuple[str, bytes]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in files:
            archive.writestr(name, data)
    return buffer.getvalue()


async def export_images_archive(store: LocalStore, path: Path) -> int:
    """Bundle every stored image into a zip archive.

    Returns:
        Number of image files written to the archive
    """
    snapshot = {}
    for collection in (*ARCHIVE_FOLDERS, GRIMOIRES):
        snapshot[collection] = await store.get(collection)
    files = _collect_images(snapshot)

    payload = await asyncio.to_thread(_build_archive, files)
    await write_bytes_atomic(Path(path), payload)

    logger.info(f"Exported {len(files)} images to {path}")
    return len(files)
