"""
Fixed-size kernel struct extraction.

Kernel structs are described field by field (name, width) instead of being
overlaid on memory. Every layout is native-endian with standard sizes, and
every extraction is bounds-checked against the payload before any field is
read.
"""

import logging
import struct
from typing import Callable, Dict, Optional, Sequence, Tuple, TypeVar

from .errors import StructDecodeError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class StructLayout:
    """
    Field-by-field description of one kernel struct.

    Args:
        name: kernel struct name, used in error messages
        fields: (field name, struct format code) pairs in wire order;
            pad bytes are written as 'x' with an empty name

    Payloads longer than the layout are accepted: the kernel pads some
    structs (tc_stats, gnet_stats_basic) to 8-byte alignment.
    """

    def __init__(self, name: str, fields: Sequence[Tuple[str, str]]):
        self.name = name
        self.fields = tuple(fields)
        self.names = tuple(field for field, code in self.fields if code != 'x')
        self._struct = struct.Struct('=' + ''.join(code for _, code in self.fields))

    @property
    def size(self) -> int:
        return self._struct.size

    def unpack(self, data: bytes, offset: int = 0) -> Dict[str, int]:
        """Extract all fields, failing if data is shorter than the layout"""
        available = len(data) - offset
        if offset < 0 or available < self.size:
            raise StructDecodeError(
                self.name,
                f"need {self.size} bytes, got {max(available, 0)}"
            )
        return dict(zip(self.names, self._struct.unpack_from(data, offset)))

    def __repr__(self):
        return f"StructLayout({self.name!r}, size={self.size})"


U32 = StructLayout('u32', [('value', 'I')])
U64 = StructLayout('u64', [('value', 'Q')])


def unpack_u32(data: bytes, name: str = 'u32') -> int:
    """Native-endian u32 from the start of data"""
    if len(data) < U32.size:
        raise StructDecodeError(name, f"need {U32.size} bytes, got {len(data)}")
    return U32.unpack(data)['value']


def unpack_u64(data: bytes, name: str = 'u64') -> int:
    """Native-endian u64 from the start of data"""
    if len(data) < U64.size:
        raise StructDecodeError(name, f"need {U64.size} bytes, got {len(data)}")
    return U64.unpack(data)['value']


def unpack_u8(data: bytes, name: str = 'u8') -> int:
    if not data:
        raise StructDecodeError(name, "need 1 byte, got 0")
    return data[0]


def decode_or_none(decode: Callable[[bytes], T], payload: bytes, strict: bool) -> Optional[T]:
    """
    Run one field decoder; a StructDecodeError is raised when strict,
    otherwise the field is reported absent.
    """
    try:
        return decode(payload)
    except StructDecodeError as e:
        if strict:
            raise
        logger.debug("%s", e)
        return None
