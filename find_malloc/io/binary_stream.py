"""
Binary stream reader and writer for WebAssembly encoding.

This module provides a BinaryStream class that reads little-endian
primitives and LEB128 integers from an in-memory buffer, reporting
absolute file offsets on failure, and a BinaryWriter that produces the
same encodings.
"""

import struct
from io import BytesIO
from typing import Callable, List, Optional, TypeVar

T = TypeVar('T')


class DecodeError(ValueError):
    """Raised when input bytes do not conform to the module format."""

    def __init__(self, offset: int, message: str):
        super().__init__(f"{message} (at offset 0x{offset:08X})")
        self.offset = offset
        self.reason = message


class EncodeError(ValueError):
    """Raised when a module value cannot be serialized."""
    pass


class BinaryStream:
    """
    Binary stream reader for WebAssembly payloads.

    Lazily decoded sections are read from their own slice of the input
    file, so every stream carries the absolute offset of its first byte.
    Errors raised while reading report positions in file coordinates.

    Attributes:
        base_offset: Absolute file offset of the first byte of the buffer
    """

    def __init__(self, data: bytes, base_offset: int = 0):
        """
        Initialize a BinaryStream.

        Args:
            data: Raw bytes to read
            base_offset: File offset of data[0]
        """
        self._data = data
        self._stream = BytesIO(data)
        self.base_offset = base_offset

    # ========== Position and Length ==========

    @property
    def position(self) -> int:
        """Get current stream position relative to the buffer."""
        return self._stream.tell()

    @position.setter
    def position(self, value: int) -> None:
        """Set stream position."""
        self._stream.seek(value)

    @property
    def offset(self) -> int:
        """Get current absolute file offset."""
        return self.base_offset + self._stream.tell()

    @property
    def length(self) -> int:
        """Get stream length."""
        return len(self._data)

    @property
    def remaining(self) -> int:
        """Number of unread bytes."""
        return len(self._data) - self._stream.tell()

    def at_end(self) -> bool:
        return self._stream.tell() >= len(self._data)

    def slice(self, start: int, end: int) -> bytes:
        """Return buffer bytes between two stream positions."""
        return self._data[start:end]

    def error(self, message: str, offset: Optional[int] = None) -> DecodeError:
        """Build a DecodeError at the current (or given absolute) offset."""
        return DecodeError(self.offset if offset is None else offset, message)

    # ========== Primitive Readers ==========

    def read_bytes(self, count: int) -> bytes:
        """Read exactly count raw bytes."""
        if count > self.remaining:
            raise self.error(
                f"Unexpected end of data: need {count} bytes, {self.remaining} available"
            )
        return self._stream.read(count)

    def read_byte(self) -> int:
        """Read an unsigned byte."""
        return self.read_bytes(1)[0]

    def peek_byte(self) -> int:
        """Read an unsigned byte without advancing."""
        value = self.read_byte()
        self._stream.seek(-1, 1)
        return value

    def read_uint32(self) -> int:
        """Read a little-endian unsigned 32-bit integer."""
        return struct.unpack('<I', self.read_bytes(4))[0]

    def read_float(self) -> float:
        """Read a 32-bit float."""
        return struct.unpack('<f', self.read_bytes(4))[0]

    def read_double(self) -> float:
        """Read a 64-bit double."""
        return struct.unpack('<d', self.read_bytes(8))[0]

    # ========== LEB128 Readers ==========

    def read_uleb128(self, max_bits: int = 64) -> int:
        """
        Read an unsigned LEB128 encoded integer.

        Args:
            max_bits: Width of the encoded type; longer encodings are rejected

        Returns:
            The decoded value
        """
        start = self.offset
        result = 0
        shift = 0
        while True:
            b = self.read_byte()
            result |= (b & 0x7F) << shift
            shift += 7
            if (b & 0x80) == 0:
                break
            if shift >= max_bits:
                raise self.error("Integer representation too long", start)
        if result >> max_bits:
            raise self.error("Integer too large", start)
        return result

    def read_u32(self) -> int:
        """Read a uleb128-encoded u32 (indices, counts and sizes)."""
        return self.read_uleb128(32)

    def read_sleb128(self, max_bits: int = 64) -> int:
        """Read a signed LEB128 encoded integer."""
        start = self.offset
        result = 0
        shift = 0
        while True:
            b = self.read_byte()
            result |= (b & 0x7F) << shift
            shift += 7
            if (b & 0x80) == 0:
                break
            if shift >= max_bits:
                raise self.error("Integer representation too long", start)

        if (b & 0x40) != 0:
            result |= (~0 << shift)

        return result

    # ========== String Readers ==========

    def read_name(self) -> str:
        """Read a length-prefixed UTF-8 name."""
        start = self.offset
        length = self.read_u32()
        raw = self.read_bytes(length)
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError:
            raise self.error("Malformed UTF-8 name", start) from None

    # ========== Vector Readers ==========

    def read_vector(self, reader: Callable[['BinaryStream'], T]) -> List[T]:
        """Read a u32 count followed by that many elements."""
        count = self.read_u32()
        # Every element takes at least one byte.
        if count > self.remaining:
            raise self.error(f"Vector length {count} exceeds remaining data")
        return [reader(self) for _ in range(count)]

    def expect_end(self, what: str) -> None:
        """Raise unless the whole buffer has been consumed."""
        if not self.at_end():
            raise self.error(f"Unexpected trailing bytes in {what}")


class BinaryWriter:
    """Binary writer producing WebAssembly encodings."""

    def __init__(self):
        self._stream = BytesIO()

    def getvalue(self) -> bytes:
        return self._stream.getvalue()

    # ========== Write Methods ==========

    def write_bytes(self, data: bytes) -> None:
        """Write raw bytes."""
        self._stream.write(data)

    def write_byte(self, value: int) -> None:
        self._stream.write(bytes((value,)))

    def write_uint32(self, value: int) -> None:
        """Write a little-endian unsigned 32-bit integer."""
        self.write_bytes(struct.pack('<I', value))

    def write_uleb128(self, value: int) -> None:
        """Write an unsigned LEB128 encoded integer."""
        if value < 0:
            raise EncodeError(f"Cannot encode negative value {value} as unsigned LEB128")
        while True:
            b = value & 0x7F
            value >>= 7
            if value:
                self.write_byte(b | 0x80)
            else:
                self.write_byte(b)
                break

    def write_sleb128(self, value: int) -> None:
        """Write a signed LEB128 encoded integer."""
        while True:
            b = value & 0x7F
            value >>= 7
            if (value == 0 and not b & 0x40) or (value == -1 and b & 0x40):
                self.write_byte(b)
                break
            self.write_byte(b | 0x80)

    def write_name(self, value: str) -> None:
        """Write a length-prefixed UTF-8 name."""
        raw = value.encode('utf-8')
        self.write_uleb128(len(raw))
        self.write_bytes(raw)

    def write_vector(self, items: List[T], writer: Callable[['BinaryWriter', T], None]) -> None:
        """Write a u32 count followed by each element."""
        self.write_uleb128(len(items))
        for item in items:
            writer(self, item)
