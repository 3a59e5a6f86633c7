"""
Collection layout and binary field declarations.

The local store, the snapshot serializer and the image archive export all
read their knowledge of the data model from here:

- COLLECTIONS: the six persisted collections, keyed by ``id``
- BINARY_FIELDS: binary payload fields paired with their MIME-type sibling
- PAGE_ENTRIES_FIELD: ordered page list owned by grimoire entities
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .codec import is_binary
from .exceptions import ValidationError

STORE_NAME = "RPGCardsDB"
STORE_VERSION = 1
KEY_FIELD = "id"

CHARACTERS = "rpgCards"
SPELLS = "rpgSpells"
ITEMS = "rpgItems"
ATTACKS = "rpgAttacks"
CATEGORIES = "rpgCategories"
GRIMOIRES = "rpgGrimoires"

COLLECTIONS: tuple[str, ...] = (CHARACTERS, SPELLS, ITEMS, ATTACKS, CATEGORIES, GRIMOIRES)

PAGE_ENTRIES_FIELD = "entries"


@dataclass(frozen=True)
class BinaryField:
    """A binary payload field and the field holding its MIME type."""

    name: str
    mime_field: str


BINARY_FIELDS: tuple[BinaryField, ...] = (
    BinaryField("image", "imageMimeType"),
    BinaryField("backgroundImage", "backgroundMimeType"),
    BinaryField("enhanceImage", "enhanceImageMimeType"),
    BinaryField("trueImage", "trueImageMimeType"),
)

PAGE_BINARY_FIELDS: tuple[BinaryField, ...] = (BinaryField("image", "imageMimeType"),)

BINARY_FIELD_NAMES = frozenset(f.name for f in BINARY_FIELDS)
PAGE_BINARY_FIELD_NAMES = frozenset(f.name for f in PAGE_BINARY_FIELDS)


def validate_collection(collection: str) -> str:
    """Ensure a collection name is one of the known collections."""
    if collection not in COLLECTIONS:
        expected = ", ".join(COLLECTIONS)
        raise ValidationError(
            "collection", f"unknown collection (expected one of {expected})", str(collection)
        )
    return collection


def validate_key(key: Any) -> str:
    """Ensure an entity key is a non-empty string."""
    if not isinstance(key, str) or not key:
        raise ValidationError(KEY_FIELD, "entity key must be a non-empty string", repr(key))
    return key


def has_page_entries(collection: str) -> bool:
    return collection == GRIMOIRES


def _check_pairs(record: dict[str, Any], fields: tuple[BinaryField, ...], where: str) -> None:
    for field in fields:
        payload = record.get(field.name)
        mime = record.get(field.mime_field)
        if payload is not None and not is_binary(payload):
            raise ValidationError(f"{where}{field.name}", "binary field must hold bytes or None")
        if payload is not None and not mime:
            raise ValidationError(
                f"{where}{field.mime_field}", f"required when {field.name} is set"
            )
        if payload is None and mime:
            raise ValidationError(
                f"{where}{field.name}", f"required when {field.mime_field} is set"
            )


def _reject_undeclared_binary(value: Any, location: str) -> None:
    if is_binary(value):
        raise ValidationError(location, "bytes are only allowed in declared image fields")
    if isinstance(value, dict):
        for key, item in value.items():
            _reject_undeclared_binary(item, f"{location}.{key}" if location else key)
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _reject_undeclared_binary(item, f"{location}[{index}]")


def _without(record: dict[str, Any], names: frozenset[str]) -> dict[str, Any]:
    return {k: v for k, v in record.items() if k not in names}


def validate_binary_pairs(collection: str, entity: dict[str, Any]) -> None:
    """Check binary fields of an entity.

    Every binary field and its MIME type must be set or cleared together,
    grimoire page entries included. Bytes anywhere outside the declared
    binary fields are rejected so that stored entities stay exportable.

    Raises:
        ValidationError: If a pair is half-set, a binary field holds a
            non-binary value, or bytes appear in an undeclared field
    """
    _check_pairs(entity, BINARY_FIELDS, "")
    rest = _without(entity, BINARY_FIELD_NAMES)

    if has_page_entries(collection) and rest.get(PAGE_ENTRIES_FIELD) is not None:
        entries = rest.pop(PAGE_ENTRIES_FIELD)
        if not isinstance(entries, list):
            raise ValidationError(PAGE_ENTRIES_FIELD, "page entries must be a list")
        for index, entry in enumerate(entries):
            where = f"{PAGE_ENTRIES_FIELD}[{index}]"
            if not isinstance(entry, dict):
                raise ValidationError(where, "page entry must be a mapping")
            _check_pairs(entry, PAGE_BINARY_FIELDS, f"{where}.")
            _reject_undeclared_binary(_without(entry, PAGE_BINARY_FIELD_NAMES), where)

    _reject_undeclared_binary(rest, "")


def _map_fields(record: Any, names: frozenset[str], convert: Callable[[Any], Any]) -> Any:
    if not isinstance(record, dict):
        return record
    mapped = dict(record)
    for name in names:
        if mapped.get(name) is not None:
            mapped[name] = convert(mapped[name])
    return mapped


def map_binary_fields(
    collection: str,
    entity: dict[str, Any],
    convert: Callable[[Any], Any],
) -> dict[str, Any]:
    """Return a copy of ``entity`` with ``convert`` applied to every set binary field.

    Only the declared fields are touched: the top-level image fields and,
    for grimoires, the ``image`` of each page entry.
    """
    mapped = _map_fields(entity, BINARY_FIELD_NAMES, convert)
    entries = mapped.get(PAGE_ENTRIES_FIELD)
    if has_page_entries(collection) and isinstance(entries, list):
        mapped[PAGE_ENTRIES_FIELD] = [
            _map_fields(entry, PAGE_BINARY_FIELD_NAMES, convert) for entry in entries
        ]
    return mapped
