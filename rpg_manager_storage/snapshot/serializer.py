"""
Whole-store snapshot serializer.

A snapshot is one JSON document mapping every collection name to the list
of its entities, with every binary field base64-encoded:

    {"rpgItems": [{"id": "1", "name": "Sword", "image": "iVBORw0...",
                   "imageMimeType": "image/png"}], "rpgCards": [], ...}

Grimoire page entries (``entries``) carry their own encoded ``image``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from ..codec import decode, encode, is_binary
from ..exceptions import FormatError, ValidationError
from ..local.store import LocalStore
from ..schema import (
    BINARY_FIELD_NAMES,
    COLLECTIONS,
    KEY_FIELD,
    PAGE_BINARY_FIELD_NAMES,
    PAGE_ENTRIES_FIELD,
    has_page_entries,
    map_binary_fields,
    validate_binary_pairs,
)

logger = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    """Result of a snapshot import."""

    imported: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.imported.values())


# =============================================================================
# Encoding (store -> document)
# =============================================================================


def _reject_stray_binary(value: Any, location: str) -> None:
    """Fail on bytes left in fields the importer would not decode."""
    if is_binary(value):
        raise FormatError("Binary value in an undeclared field cannot be exported", location)
    if isinstance(value, dict):
        for key, item in value.items():
            _reject_stray_binary(item, f"{location}.{key}")
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _reject_stray_binary(item, f"{location}[{index}]")


def _encode_value(value: Any) -> Any:
    return encode(value) if is_binary(value) else value


def encode_entity(collection: str, entity: dict[str, Any]) -> dict[str, Any]:
    """Return a JSON-safe copy of an entity with binary fields base64-encoded.

    Raises:
        FormatError: If bytes remain in a field that is not a declared binary field
    """
    encoded = map_binary_fields(collection, entity, _encode_value)
    _reject_stray_binary(encoded, f"{collection}[{entity.get(KEY_FIELD)}]")
    return encoded


async def export_snapshot(store: LocalStore) -> dict[str, list[dict[str, Any]]]:
    """Read every collection and build one JSON-serializable snapshot document."""
    document: dict[str, list[dict[str, Any]]] = {}
    for collection in COLLECTIONS:
        entities = await store.get(collection)
        entities = sorted(entities, key=lambda e: e[KEY_FIELD])
        document[collection] = [encode_entity(collection, e) for e in entities]

    logger.debug(
        "Snapshot exported: "
        + ", ".join(f"{name}={len(items)}" for name, items in document.items())
    )
    return document


# =============================================================================
# Decoding (document -> store)
# =============================================================================


def _decode_fields(record: dict[str, Any], names: frozenset[str], location: str) -> dict[str, Any]:
    decoded = dict(record)
    for name in names:
        value = decoded.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            raise FormatError(
                f"Binary field must be base64 text, got {type(value).__name__}",
                f"{location}.{name}",
            )
        try:
            decoded[name] = decode(value)
        except FormatError as e:
            raise FormatError(e.message, f"{location}.{name}") from e
    return decoded


def decode_entity(collection: str, raw: Any, location: str | None = None) -> dict[str, Any]:
    """Validate one snapshot entity and decode its binary fields back to bytes.

    Raises:
        FormatError: If the entity does not have the expected shape
    """
    location = location or collection
    if not isinstance(raw, dict):
        raise FormatError("Entity must be a JSON object", location)

    key = raw.get(KEY_FIELD)
    if not isinstance(key, str) or not key:
        raise FormatError("Entity must have a non-empty string id", location)

    entity = _decode_fields(raw, BINARY_FIELD_NAMES, location)

    if has_page_entries(collection) and entity.get(PAGE_ENTRIES_FIELD) is not None:
        entries = entity[PAGE_ENTRIES_FIELD]
        if not isinstance(entries, list):
            raise FormatError("Page entries must be a list", f"{location}.{PAGE_ENTRIES_FIELD}")
        decoded_entries = []
        for index, entry in enumerate(entries):
            entry_location = f"{location}.{PAGE_ENTRIES_FIELD}[{index}]"
            if not isinstance(entry, dict):
                raise FormatError("Page entry must be a JSON object", entry_location)
            decoded_entries.append(_decode_fields(entry, PAGE_BINARY_FIELD_NAMES, entry_location))
        entity[PAGE_ENTRIES_FIELD] = decoded_entries

    try:
        validate_binary_pairs(collection, entity)
    except ValidationError as e:
        raise FormatError(e.message, location) from e

    return entity


def decode_snapshot(document: Any) -> tuple[dict[str, list[dict[str, Any]]], list[str]]:
    """Validate and decode a whole snapshot without touching any store.

    Returns:
        Tuple of (decoded collections, skipped unknown keys)

    Raises:
        FormatError: If the document is not a snapshot
    """
    if not isinstance(document, dict):
        raise FormatError(f"Snapshot must be a JSON object, got {type(document).__name__}")

    decoded: dict[str, list[dict[str, Any]]] = {}
    skipped: list[str] = []
    for name, items in document.items():
        if name not in COLLECTIONS:
            skipped.append(name)
            continue
        if not isinstance(items, list):
            raise FormatError("Collection must be a list of entities", name)
        decoded[name] = [
            decode_entity(name, item, f"{name}[{index}]") for index, item in enumerate(items)
        ]

    if not decoded:
        raise FormatError("Snapshot contains none of the expected collections")

    return decoded, skipped


async def import_snapshot(store: LocalStore, document: Any) -> ImportSummary:
    """Replace local collections with the ones present in a snapshot.

    The document is fully validated before the first write and all
    collections are replaced in one transaction; a malformed document or a
    failed write leaves the store untouched. Collections missing from the
    document keep their local contents.

    Raises:
        FormatError: If the document is malformed
        StoreUnavailableError: If the engine fails while writing
    """
    decoded, skipped = decode_snapshot(document)
    for name in skipped:
        logger.warning(f"Skipping unknown snapshot collection: {name}")

    summary = ImportSummary(skipped=skipped)
    summary.imported = await store.replace_collections(decoded)

    logger.info(
        f"Snapshot imported: {summary.total} entities in {len(summary.imported)} collections"
    )
    return summary


def parse_snapshot(raw: bytes | str) -> dict[str, Any]:
    """Parse snapshot JSON text.

    Raises:
        FormatError: On invalid JSON, invalid UTF-8 or a non-object root
    """
    try:
        document = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise FormatError(f"Snapshot is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise FormatError(f"Snapshot must be a JSON object, got {type(document).__name__}")
    return document
