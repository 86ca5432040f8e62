"""
IO module for binary stream handling.
"""

from .binary_stream import BinaryStream, BinaryWriter, DecodeError, EncodeError

__all__ = ['BinaryStream', 'BinaryWriter', 'DecodeError', 'EncodeError']
