"""
Little-endian primitive reader over an immutable byte buffer.

Every binary decoder in the package reads through ByteReader so that bounds
checks and error reporting are consistent. Reads past the end raise
ByteRangeError; peeks never raise and return 0 when out of range.
"""

import struct

from typing import cast

from prs1core.parsers.base import ByteRangeError

BytesLike = bytes | bytearray | memoryview


class ByteReader:
    """
    Sequential little-endian reader.

    Example:
        >>> r = ByteReader(b"\\x01\\x02\\x00")
        >>> r.read_uint8(), r.read_uint16()
        (1, 2)
    """

    def __init__(self, data: BytesLike, offset: int = 0):
        """
        Initialize reader.

        Args:
            data: Buffer to read from (not copied)
            offset: Initial position

        Raises:
            ByteRangeError: If offset is outside the buffer
        """
        self._data = memoryview(data).cast("B") if not isinstance(data, bytes) else data
        self._pos = 0
        self.seek(offset)

    @property
    def pos(self) -> int:
        return self._pos

    @property
    def length(self) -> int:
        return len(self._data)

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    @property
    def eof(self) -> bool:
        return self._pos >= len(self._data)

    def seek(self, offset: int) -> None:
        """Move to an absolute offset (end of buffer is allowed)."""
        if offset < 0 or offset > len(self._data):
            raise ByteRangeError(
                f"seek out of range: {offset} (length {len(self._data)})"
            )
        self._pos = offset

    def skip(self, count: int) -> None:
        """Advance by ``count`` bytes."""
        if count < 0:
            raise ByteRangeError(f"skip count must be non-negative, got {count}")
        self.seek(self._pos + count)

    def read_bytes(self, count: int) -> bytes:
        """Read raw bytes."""
        if count < 0:
            raise ByteRangeError(f"read length must be non-negative, got {count}")
        if count > self.remaining:
            raise ByteRangeError(
                f"Expected {count} bytes, got {self.remaining} at offset {self._pos}"
            )
        data = bytes(self._data[self._pos : self._pos + count])
        self._pos += count
        return data

    def _unpack(self, fmt: str, size: int) -> int:
        return cast(int, struct.unpack(f"<{fmt}", self.read_bytes(size))[0])

    def read_uint8(self) -> int:
        """Read unsigned 8-bit integer."""
        return self._unpack("B", 1)

    def read_int8(self) -> int:
        """Read signed 8-bit integer."""
        return self._unpack("b", 1)

    def read_uint16(self) -> int:
        """Read unsigned 16-bit integer."""
        return self._unpack("H", 2)

    def read_int16(self) -> int:
        """Read signed 16-bit integer."""
        return self._unpack("h", 2)

    def read_uint32(self) -> int:
        """Read unsigned 32-bit integer."""
        return self._unpack("I", 4)

    def read_int32(self) -> int:
        """Read signed 32-bit integer."""
        return self._unpack("i", 4)

    def read_uint64(self) -> int:
        """Read unsigned 64-bit integer."""
        return self._unpack("Q", 8)

    def read_string(self, count: int, trim_null: bool = True) -> str:
        """
        Read a fixed-length latin-1 string.

        Args:
            count: Number of bytes to consume
            trim_null: Cut the result at the first NUL byte

        Returns:
            Decoded string
        """
        raw = self.read_bytes(count)
        if trim_null:
            nul = raw.find(b"\x00")
            if nul >= 0:
                raw = raw[:nul]
        return raw.decode("latin-1")

    def read_cstring(self, max_len: int = 256) -> str:
        """Read a NUL-terminated string of at most ``max_len`` bytes."""
        start = self._pos
        end = start
        limit = min(len(self._data), start + max_len)
        while end < limit and self._data[end] != 0:
            end += 1
        text = bytes(self._data[start:end]).decode("latin-1")
        has_terminator = end < len(self._data) and self._data[end] == 0
        self._pos = end + 1 if has_terminator else end
        return text

    def peek_uint8(self, rel: int = 0) -> int:
        """Byte at ``pos + rel`` without advancing; 0 when out of range."""
        p = self._pos + rel
        if p < 0 or p >= len(self._data):
            return 0
        return int(self._data[p])

    def peek_uint16(self, rel: int = 0) -> int:
        """Little-endian u16 at ``pos + rel`` without advancing; 0 when out of range."""
        p = self._pos + rel
        if p < 0 or p + 1 >= len(self._data):
            return 0
        return int(self._data[p]) | (int(self._data[p + 1]) << 8)

    def slice(self, offset: int, length: int) -> bytes:
        """
        Copy ``length`` bytes at absolute ``offset`` without moving.

        Raises:
            ByteRangeError: On negative arguments or a slice past the end
        """
        if offset < 0 or length < 0 or offset + length > len(self._data):
            raise ByteRangeError(
                f"slice out of range: offset={offset} length={length} "
                f"buffer={len(self._data)}"
            )
        return bytes(self._data[offset : offset + length])
