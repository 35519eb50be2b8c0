"""
IO module for binary stream handling and SCALE encoding.
"""

from .binary_stream import BinaryStream
from . import scale

__all__ = ['BinaryStream', 'scale']
