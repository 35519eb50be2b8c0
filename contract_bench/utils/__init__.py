"""
Utility functions and classes.
"""

from .hashing import blake2_128, blake2_256, get_hasher, keccak_256, sha2_256

__all__ = ['blake2_128', 'blake2_256', 'get_hasher', 'keccak_256', 'sha2_256']
