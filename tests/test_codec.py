"""Tests for the base64 codec."""

import pytest

from rpg_manager_storage.codec import decode, encode, is_binary
from rpg_manager_storage.exceptions import FormatError


class TestEncode:
    def test_none_passes_through(self):
        assert encode(None) is None
        assert decode(None) is None

    def test_empty_buffer(self):
        assert encode(b"") == ""
        assert decode("") == b""

    def test_known_value(self):
        assert encode(b"hello") == "aGVsbG8="
        assert decode("aGVsbG8=") == b"hello"

    def test_bytearray_and_memoryview(self):
        assert encode(bytearray(b"\x00\xff")) == encode(b"\x00\xff")
        assert encode(memoryview(b"\x00\xff")) == "AP8="

    def test_all_byte_values_survive(self):
        data = bytes(range(256))
        assert decode(encode(data)) == data


class TestDecodeErrors:
    @pytest.mark.parametrize("text", ["not base64!", "aGVsbG8", "ção"])
    def test_invalid_input_raises_format_error(self, text):
        with pytest.raises(FormatError):
            decode(text)


class TestIsBinary:
    def test_detects_buffers(self):
        assert is_binary(b"x")
        assert is_binary(bytearray(b"x"))
        assert is_binary(memoryview(b"x"))

    def test_rejects_text_and_none(self):
        assert not is_binary("x")
        assert not is_binary(None)
        assert not is_binary([1, 2])
