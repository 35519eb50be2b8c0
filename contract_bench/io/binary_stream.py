"""
Binary stream reader/writer with LEB128 support.

This module provides a BinaryStream class that reads and writes the
little-endian primitives and variable-length integers used by the
WebAssembly binary format.
"""

import struct
from io import BytesIO
from typing import Callable, List, Optional, TypeVar, Union

T = TypeVar('T')


class BinaryStream:
    """
    Binary stream reader/writer.

    The same stream is used for decoding modules (reading) and for
    assembling them (writing). Reads past the end of the data raise
    ValueError instead of silently returning short buffers.
    """

    def __init__(self, data: Union[bytes, BytesIO, None] = None):
        """
        Initialize a BinaryStream.

        Args:
            data: Raw bytes, a BytesIO stream, or None for an empty
                stream that is going to be written to
        """
        if data is None:
            self._stream = BytesIO()
        elif isinstance(data, (bytes, bytearray)):
            self._stream = BytesIO(bytes(data))
        else:
            self._stream = data

    # ========== Position and Length ==========

    @property
    def position(self) -> int:
        """Get current stream position."""
        return self._stream.tell()

    @position.setter
    def position(self, value: int) -> None:
        """Set stream position."""
        self._stream.seek(value)

    @property
    def length(self) -> int:
        """Get stream length."""
        current = self._stream.tell()
        self._stream.seek(0, 2)  # Seek to end
        length = self._stream.tell()
        self._stream.seek(current)  # Restore position
        return length

    @property
    def at_end(self) -> bool:
        """Whether every byte of the stream has been consumed."""
        return self.position >= self.length

    # ========== Primitive Readers ==========

    def read_bytes(self, count: int) -> bytes:
        """Read exactly `count` raw bytes."""
        data = self._stream.read(count)
        if len(data) != count:
            raise ValueError(
                f"Unexpected end of data: wanted {count} bytes at offset "
                f"{self.position - len(data)}, got {len(data)}"
            )
        return data

    def read_byte(self) -> int:
        """Read an unsigned byte."""
        return self.read_bytes(1)[0]

    def read_uint32(self) -> int:
        """Read an unsigned 32-bit integer."""
        return struct.unpack('<I', self.read_bytes(4))[0]

    def read_string(self, length: int) -> str:
        """Read a fixed-length UTF-8 string."""
        return self.read_bytes(length).decode('utf-8')

    # ========== LEB128 Readers ==========

    def read_uleb128(self) -> int:
        """Read an unsigned LEB128 encoded integer."""
        result = 0
        shift = 0
        while True:
            b = self.read_byte()
            result |= (b & 0x7F) << shift
            if (b & 0x80) == 0:
                break
            shift += 7
        return result

    def read_sleb128(self) -> int:
        """Read a signed LEB128 encoded integer."""
        result = 0
        shift = 0
        byte = 0
        while True:
            byte = self.read_byte()
            result |= (byte & 0x7F) << shift
            shift += 7
            if (byte & 0x80) == 0:
                break

        if byte & 0x40:
            result |= (~0 << shift)

        return result

    def read_name(self) -> str:
        """Read a length-prefixed UTF-8 name."""
        return self.read_string(self.read_uleb128())

    def read_vector(self, read_func: Callable[[], T]) -> List[T]:
        """
        Read a length-prefixed vector.

        Args:
            read_func: Function to read each element

        Returns:
            List of read elements
        """
        count = self.read_uleb128()
        return [read_func() for _ in range(count)]

    # ========== Write Methods ==========

    def write_bytes(self, data: bytes) -> None:
        """Write raw bytes."""
        self._stream.write(data)

    def write_byte(self, value: int) -> None:
        """Write an unsigned byte."""
        self.write_bytes(struct.pack('<B', value))

    def write_uint32(self, value: int) -> None:
        """Write an unsigned 32-bit integer."""
        self.write_bytes(struct.pack('<I', value))

    def write_uleb128(self, value: int) -> None:
        """Write an unsigned LEB128 encoded integer (minimal length)."""
        if value < 0:
            raise ValueError(f"Cannot encode negative value {value} as unsigned LEB128")
        while True:
            b = value & 0x7F
            value >>= 7
            if value:
                self.write_byte(b | 0x80)
            else:
                self.write_byte(b)
                break

    def write_sleb128(self, value: int) -> None:
        """Write a signed LEB128 encoded integer (minimal length)."""
        while True:
            b = value & 0x7F
            value >>= 7
            done = (value == 0 and not b & 0x40) or (value == -1 and b & 0x40)
            if done:
                self.write_byte(b)
                break
            self.write_byte(b | 0x80)

    def write_name(self, name: str) -> None:
        """Write a length-prefixed UTF-8 name."""
        encoded = name.encode('utf-8')
        self.write_uleb128(len(encoded))
        self.write_bytes(encoded)

    def write_sized(self, payload: bytes) -> None:
        """Write a payload prefixed with its LEB128 byte length."""
        self.write_uleb128(len(payload))
        self.write_bytes(payload)

    # ========== Utility Methods ==========

    def get_data(self) -> bytes:
        """Get the underlying data."""
        current = self.position
        self.position = 0
        data = self._stream.read()
        self.position = current
        return data

    def dispose(self) -> None:
        """Close the stream."""
        self._stream.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.dispose()
