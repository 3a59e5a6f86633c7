"""Binary <-> text codec for JSON transport of image payloads."""

from __future__ import annotations

import base64
import binascii

from .exceptions import FormatError


def encode(data: bytes | bytearray | memoryview | None) -> str | None:
    """Encode a byte buffer as base64 text.

    Returns None for None input instead of raising.
    """
    if data is None:
        return None
    return base64.b64encode(bytes(data)).decode("ascii")


def decode(text: str | None) -> bytes | None:
    """Decode base64 text produced by :func:`encode`.

    Raises:
        FormatError: If the text is not valid base64
    """
    if text is None:
        return None
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        raise FormatError(f"Invalid base64 payload: {e}") from e


def is_binary(value: object) -> bool:
    """Check whether a value is a raw byte buffer."""
    return isinstance(value, (bytes, bytearray, memoryview))
