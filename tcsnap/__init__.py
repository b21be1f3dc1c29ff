"""
tcsnap - Linux Traffic Control snapshot library

Decodes the kernel's RTNetlink qdisc, class and link dumps into immutable
records.

Modules:
    query: dump entry points (list_qdiscs, list_classes, classes_for_name, ...)
    tc: record assembly from already received messages
    codecs: per-kind option and xstats decoders (htb, fq_codel, clsact)
    policy: strict/lenient handling of unknown input
    cli: the tcsnap command

Example:
    >>> from tcsnap import list_qdiscs, Policy
    >>> for record in list_qdiscs(Policy.lenient()):
    ...     if record.stats2 and record.stats2.basic:
    ...         print(record.kind, record.stats2.basic.bytes)
"""

__version__ = "1.0.0"
__author__ = "Harry Coin"
__email__ = "hcoin@quietfountain.com"
__license__ = "MIT"

from .errors import (
    FramingError, KernelError, LinkNotFoundError, MissingAttributeError,
    Stats2DecodeError, StructDecodeError, TcError, TransportError,
    UnknownAttributeError, UnknownKindError, UnknownMessageTypeError,
)
from .policy import Policy
from .query import (
    TrafficControlQuery, classes_for_index, classes_for_name, list_classes,
    list_links, list_qdiscs, tc_stats,
)
from .link import decode_links
from .tc import decode_messages
from .types import (
    Clsact, FqCodel, FqCodelXstats, Htb, HtbGlob, HtbOpt, HtbXstats, Link,
    RateSpec, Stats, Stats2, StatsBasic, StatsQueue, TcRecord,
)

__all__ = [
    "TrafficControlQuery",
    "list_qdiscs",
    "list_classes",
    "classes_for_index",
    "classes_for_name",
    "list_links",
    "tc_stats",
    "decode_messages",
    "decode_links",
    "Policy",
    "TcRecord",
    "Link",
    "Stats",
    "Stats2",
    "StatsBasic",
    "StatsQueue",
    "Htb",
    "HtbGlob",
    "HtbOpt",
    "HtbXstats",
    "RateSpec",
    "FqCodel",
    "FqCodelXstats",
    "Clsact",
    "TcError",
    "TransportError",
    "KernelError",
    "FramingError",
    "UnknownMessageTypeError",
    "UnknownAttributeError",
    "UnknownKindError",
    "StructDecodeError",
    "Stats2DecodeError",
    "MissingAttributeError",
    "LinkNotFoundError",
    "__version__",
]
