"""
SCALE encoding helpers.

Balances, block numbers, account ids and topic lists are handed to
contracts in the runtime's native SCALE encoding: fixed-width little
endian integers, compact-prefixed vectors and strings.
"""

import struct
from typing import Iterable, List, Tuple

from .binary_stream import BinaryStream


# ========== Fixed Width ==========

def encode_u32(value: int) -> bytes:
    """Encode an unsigned 32-bit integer."""
    return struct.pack('<I', value)


def encode_u64(value: int) -> bytes:
    """Encode an unsigned 64-bit integer."""
    return struct.pack('<Q', value)


def encode_u128(value: int) -> bytes:
    """Encode an unsigned 128-bit integer."""
    if not 0 <= value < (1 << 128):
        raise ValueError(f"Value out of range for u128: {value}")
    return value.to_bytes(16, 'little')


def decode_uint(data: bytes) -> int:
    """Decode a little endian unsigned integer of any width."""
    return int.from_bytes(data, 'little')


# ========== Compact ==========

def encode_compact(value: int) -> bytes:
    """
    Encode an integer in SCALE compact form.

    - 1 byte for values 0-63
    - 2 bytes for values 64-16383
    - 4 bytes for values 16384-1073741823
    - big-integer mode above that
    """
    if value < 0:
        raise ValueError(f"Compact encoding requires a non-negative value, got {value}")
    if value < 1 << 6:
        return bytes([value << 2])
    if value < 1 << 14:
        return struct.pack('<H', (value << 2) | 0b01)
    if value < 1 << 30:
        return struct.pack('<I', (value << 2) | 0b10)

    length = (value.bit_length() + 7) // 8
    return bytes([((length - 4) << 2) | 0b11]) + value.to_bytes(length, 'little')


def read_compact(stream: BinaryStream) -> int:
    """Read a SCALE compact integer from a stream."""
    first = stream.read_byte()
    mode = first & 0b11
    if mode == 0b00:
        return first >> 2
    if mode == 0b01:
        return (first | (stream.read_byte() << 8)) >> 2
    if mode == 0b10:
        rest = stream.read_bytes(3)
        return decode_uint(bytes([first]) + rest) >> 2
    length = (first >> 2) + 4
    return decode_uint(stream.read_bytes(length))


def decode_compact(data: bytes) -> Tuple[int, int]:
    """
    Decode a compact integer at the start of `data`.

    Returns:
        Tuple of (value, number of bytes consumed)
    """
    stream = BinaryStream(data)
    value = read_compact(stream)
    return value, stream.position


# ========== Composite ==========

def encode_bytes(data: bytes) -> bytes:
    """Encode a byte vector (compact length prefix)."""
    return encode_compact(len(data)) + data


def encode_str(value: str) -> bytes:
    """Encode a UTF-8 string."""
    return encode_bytes(value.encode('utf-8'))


def encode_vec(items: Iterable[bytes]) -> bytes:
    """Encode a vector of already encoded items."""
    items = list(items)
    return encode_compact(len(items)) + b''.join(items)


def decode_fixed_vec(data: bytes, item_size: int) -> List[bytes]:
    """
    Decode a vector of fixed-size items, e.g. a list of 32-byte hashes.

    Raises:
        ValueError: If the data is truncated or has trailing bytes
    """
    count, offset = decode_compact(data)
    end = offset + count * item_size
    if end != len(data):
        raise ValueError(
            f"Vector of {count} items of {item_size} bytes needs {end} bytes, got {len(data)}"
        )
    return [data[offset + i * item_size:offset + (i + 1) * item_size] for i in range(count)]
