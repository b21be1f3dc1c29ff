"""
Top-level TCA_* attribute walking.

The walker only sorts a message's attributes into buckets. Options stay a
list of (option id, bytes) pairs: an option id only means something once
the message's TCA_KIND is known, and that may come later in the message.
"""

from dataclasses import dataclass
import logging
from typing import Iterable, Optional, Tuple

from .constants import (
    TCA_ATTR_NAMES, TCA_CHAIN, TCA_DUMP_FLAGS, TCA_DUMP_INVISIBLE,
    TCA_EGRESS_BLOCK, TCA_EXT_WARN_MSG, TCA_FCNT, TCA_HW_OFFLOAD,
    TCA_INGRESS_BLOCK, TCA_KIND, TCA_OPTIONS, TCA_PAD, TCA_RATE, TCA_STAB,
    TCA_STATS, TCA_STATS2, TCA_UNSPEC, TCA_XSTATS,
)
from .errors import FramingError, StructDecodeError, UnknownAttributeError
from .netlink import split_attributes
from .policy import Policy, STRICT
from .structs import unpack_u8, unpack_u32

logger = logging.getLogger(__name__)

Pairs = Tuple[Tuple[int, bytes], ...]

# Recognized kernel attributes that carry nothing the records expose
IGNORED_ATTRIBUTES = frozenset([
    TCA_UNSPEC, TCA_RATE, TCA_FCNT, TCA_STAB, TCA_PAD, TCA_DUMP_INVISIBLE,
    TCA_INGRESS_BLOCK, TCA_EGRESS_BLOCK, TCA_DUMP_FLAGS, TCA_EXT_WARN_MSG,
])


@dataclass(frozen=True)
class TcAttributes:
    """
    Attributes of one tcmsg, sorted but not yet interpreted.

    ``options`` is None when the message has no TCA_OPTIONS. When the
    options payload is not a list of attributes (some classless qdiscs put
    a bare struct there) it is kept in ``options_raw`` instead.
    """
    kind: str = ''
    options: Optional[Pairs] = None
    options_raw: Optional[bytes] = None
    stats: Optional[bytes] = None
    stats2: Optional[Pairs] = None
    xstats: Optional[bytes] = None
    hw_offload: Optional[int] = None
    chain: Optional[int] = None

    @property
    def has_options(self) -> bool:
        return self.options is not None or self.options_raw is not None


def decode_string(payload: bytes) -> str:
    """NUL-terminated string attribute"""
    return payload.split(b'\0', 1)[0].decode('utf-8', errors='replace')


def walk_tc_attributes(attributes: Iterable[Tuple[int, bytes]],
                       policy: Policy = STRICT) -> TcAttributes:
    """
    Sort (kind, payload) pairs of one tcmsg into a TcAttributes.

    Raises:
        UnknownAttributeError: unknown kind and strict attribute policy
        StructDecodeError: a scalar attribute is truncated and strict policy
        FramingError: TCA_STATS2 does not contain well-formed attributes
    """
    values = {}

    for kind, payload in attributes:
        if kind == TCA_KIND:
            values['kind'] = decode_string(payload)
        elif kind == TCA_OPTIONS:
            try:
                values['options'] = tuple(split_attributes(payload))
            except FramingError as e:
                logger.debug("TCA_OPTIONS is not nested (%s), keeping raw bytes", e)
                values['options_raw'] = bytes(payload)
        elif kind == TCA_STATS:
            values['stats'] = bytes(payload)
        elif kind == TCA_STATS2:
            values['stats2'] = tuple(split_attributes(payload))
        elif kind == TCA_XSTATS:
            values['xstats'] = bytes(payload)
        elif kind in (TCA_HW_OFFLOAD, TCA_CHAIN):
            name = TCA_ATTR_NAMES[kind]
            try:
                if kind == TCA_HW_OFFLOAD:
                    values['hw_offload'] = unpack_u8(payload, name)
                else:
                    values['chain'] = unpack_u32(payload, name)
            except StructDecodeError:
                if policy.fail_on_unknown_attribute:
                    raise
                logger.debug("dropping truncated %s", name)
        elif kind in IGNORED_ATTRIBUTES:
            continue
        elif policy.fail_on_unknown_attribute:
            raise UnknownAttributeError(kind)
        else:
            logger.debug("skipping unknown TCA attribute %d", kind)

    return TcAttributes(**values)
