"""
Snapshot serialization for backup and restore.

Provides:
- export_snapshot / import_snapshot: whole-store JSON document with
  base64-encoded binary fields
- export_to_file / import_from_file: the same document on local disk
- export_entity / import_entity: single-entity share files
- export_images_archive: zip bundle of every stored image
"""

from .files import (
    export_entity,
    export_images_archive,
    export_to_file,
    import_entity,
    import_from_file,
)
from .serializer import (
    ImportSummary,
    decode_entity,
    decode_snapshot,
    encode_entity,
    export_snapshot,
    import_snapshot,
    parse_snapshot,
)

__all__ = [
    "ImportSummary",
    "export_snapshot",
    "import_snapshot",
    "parse_snapshot",
    "encode_entity",
    "decode_entity",
    "decode_snapshot",
    "export_to_file",
    "import_from_file",
    "export_entity",
    "import_entity",
    "export_images_archive",
]
