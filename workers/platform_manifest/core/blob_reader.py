"""
BlobReader — bounded little-endian cursor over metadata bytes.

Every read is checked against the end of the buffer; running past it
raises MetadataFormatError instead of returning short data.

Encodings (ECMA-335 II.23.2, II.23.3):
  - compressed unsigned integer: 1, 2 or 4 bytes, big-endian payload,
    width selected by the top bits of the first byte.
  - serialized string: compressed length + UTF-8 bytes; a single 0xFF
    byte encodes a null string.
"""
import struct
from typing import Optional

from platform_manifest.core.errors import MetadataFormatError

_NULL_STRING_MARKER = 0xFF


class BlobReader:
    """Sequential reader over ``data[offset:end]``."""

    def __init__(self, data: bytes, offset: int = 0, end: Optional[int] = None):
        if end is None:
            end = len(data)
        if not 0 <= offset <= end <= len(data):
            raise MetadataFormatError(
                f"Blob bounds [{offset:#x}, {end:#x}) outside buffer of {len(data):#x} bytes"
            )
        self._data = data
        self._offset = offset
        self._end = end

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return self._end - self._offset

    def _take(self, n: int) -> int:
        if n < 0 or self._offset + n > self._end:
            raise MetadataFormatError(
                f"Read of {n} bytes at {self._offset:#x} runs past end of blob ({self._end:#x})"
            )
        start = self._offset
        self._offset += n
        return start

    def skip(self, n: int) -> None:
        self._take(n)

    def read_bytes(self, n: int) -> bytes:
        start = self._take(n)
        return self._data[start:start + n]

    def read_u8(self) -> int:
        return self._data[self._take(1)]

    def read_u16(self) -> int:
        return struct.unpack_from("<H", self._data, self._take(2))[0]

    def read_u32(self) -> int:
        return struct.unpack_from("<I", self._data, self._take(4))[0]

    def read_u64(self) -> int:
        return struct.unpack_from("<Q", self._data, self._take(8))[0]

    def read_index(self, width: int) -> int:
        """Read a 2- or 4-byte heap/table index."""
        if width == 2:
            return self.read_u16()
        if width == 4:
            return self.read_u32()
        raise ValueError(f"Unsupported index width {width}")

    def read_compressed_uint(self) -> int:
        first = self.read_u8()
        if first & 0x80 == 0:
            return first
        if first & 0xC0 == 0x80:
            return ((first & 0x3F) << 8) | self.read_u8()
        if first & 0xE0 == 0xC0:
            rest = self.read_bytes(3)
            return ((first & 0x1F) << 24) | (rest[0] << 16) | (rest[1] << 8) | rest[2]
        raise MetadataFormatError(
            f"Invalid compressed integer lead byte {first:#04x} at {self._offset - 1:#x}"
        )

    def read_serialized_string(self) -> Optional[str]:
        """Read a SerString.  Returns None for the null-string marker."""
        if self.remaining >= 1 and self._data[self._offset] == _NULL_STRING_MARKER:
            self._offset += 1
            return None
        length = self.read_compressed_uint()
        raw = self.read_bytes(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MetadataFormatError(f"Serialized string is not valid UTF-8: {e}") from e
