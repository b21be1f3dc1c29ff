"""
Queueing statistics decoding.

The kernel reports counters twice: the legacy TCA_STATS block and the
segmented TCA_STATS2 container. Both are decoded independently.
"""

import logging
from typing import Iterable, Tuple

from .constants import (
    TCA_STATS_APP, TCA_STATS_BASIC, TCA_STATS_BASIC_HW, TCA_STATS_PAD,
    TCA_STATS_PKT64, TCA_STATS_QUEUE, TCA_STATS_RATE_EST,
    TCA_STATS_RATE_EST64, TCA_STATS_UNSPEC,
)
from .errors import Stats2DecodeError, StructDecodeError, UnknownAttributeError
from .policy import Policy, STRICT
from .structs import StructLayout
from .types import Stats, Stats2, StatsBasic, StatsQueue

logger = logging.getLogger(__name__)

# struct tc_stats (linux/pkt_sched.h)
TC_STATS = StructLayout('tc_stats', [
    ('bytes', 'Q'),
    ('packets', 'I'),
    ('drops', 'I'),
    ('overlimits', 'I'),
    ('bps', 'I'),
    ('pps', 'I'),
    ('qlen', 'I'),
    ('backlog', 'I'),
])

# struct gnet_stats_basic (linux/gen_stats.h)
GNET_STATS_BASIC = StructLayout('gnet_stats_basic', [
    ('bytes', 'Q'),
    ('packets', 'I'),
])

# struct gnet_stats_queue (linux/gen_stats.h)
GNET_STATS_QUEUE = StructLayout('gnet_stats_queue', [
    ('qlen', 'I'),
    ('backlog', 'I'),
    ('drops', 'I'),
    ('requeues', 'I'),
    ('overlimits', 'I'),
])

# Known TCA_STATS_* blocks the records do not carry
IGNORED_STATS = frozenset([
    TCA_STATS_UNSPEC, TCA_STATS_RATE_EST, TCA_STATS_RATE_EST64,
    TCA_STATS_PAD, TCA_STATS_BASIC_HW, TCA_STATS_PKT64,
])


def parse_stats(data: bytes) -> Stats:
    """Decode the legacy TCA_STATS block"""
    return Stats(**TC_STATS.unpack(data))


def parse_stats2(blocks: Iterable[Tuple[int, bytes]], policy: Policy = STRICT) -> Stats2:
    """
    Decode the TCA_STATS2 sub-blocks.

    Every block is attempted. Under a strict attribute policy all failures
    are raised together as one Stats2DecodeError; otherwise a block that
    failed is left as None.

    TCA_STATS_APP is skipped: it repeats TCA_XSTATS, which is decoded per
    kind by the codec registry.
    """
    basic = None
    queue = None
    errors = []

    for kind, payload in blocks:
        if kind == TCA_STATS_BASIC:
            try:
                basic = StatsBasic(**GNET_STATS_BASIC.unpack(payload))
            except StructDecodeError as e:
                errors.append(e)
        elif kind == TCA_STATS_QUEUE:
            try:
                queue = StatsQueue(**GNET_STATS_QUEUE.unpack(payload))
            except StructDecodeError as e:
                errors.append(e)
        elif kind == TCA_STATS_APP or kind in IGNORED_STATS:
            continue
        elif policy.fail_on_unknown_attribute:
            raise UnknownAttributeError(kind, 'TCA_STATS')
        else:
            logger.debug("skipping unknown TCA_STATS attribute %d", kind)

    if errors:
        if policy.fail_on_unknown_attribute:
            raise Stats2DecodeError(errors)
        for error in errors:
            logger.debug("%s", error)

    return Stats2(basic=basic, queue=queue)
