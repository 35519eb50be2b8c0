"""
Hash functions used by the runtime and by the benchmark fixtures.
"""

import hashlib
from typing import Callable, Dict

from Crypto.Hash import keccak

from ..io.scale import encode_u32


def blake2_256(data: bytes) -> bytes:
    """BLAKE2b with a 32 byte digest."""
    return hashlib.blake2b(data, digest_size=32).digest()


def blake2_128(data: bytes) -> bytes:
    """BLAKE2b with a 16 byte digest."""
    return hashlib.blake2b(data, digest_size=16).digest()


def sha2_256(data: bytes) -> bytes:
    """SHA2-256."""
    return hashlib.sha256(data).digest()


def keccak_256(data: bytes) -> bytes:
    """Keccak-256 (pre-standard SHA3 padding)."""
    f_hash = keccak.new(digest_bits=256)
    f_hash.update(data)
    return f_hash.digest()


HASHERS: Dict[str, Callable[[bytes], bytes]] = {
    'blake2_256': blake2_256,
    'blake2_128': blake2_128,
    'sha2_256': sha2_256,
    'keccak_256': keccak_256,
}


def get_hasher(name: str) -> Callable[[bytes], bytes]:
    """
    Look up a hash function by name.

    Raises:
        ValueError: If the name is not a known hasher
    """
    try:
        return HASHERS[name]
    except KeyError:
        raise ValueError(f"Unknown hasher '{name}', expected one of {sorted(HASHERS)}") from None


def hash_of_u32(hasher: Callable[[bytes], bytes], value: int) -> bytes:
    """Hash the SCALE encoding of a u32, the way storage keys and topics are derived."""
    return hasher(encode_u32(value))
