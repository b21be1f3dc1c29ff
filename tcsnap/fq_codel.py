"""
FQ_CODEL (Fair Queuing Controlled Delay) options and extended stats.
"""

import logging
from typing import Iterable, Tuple

from .constants import (
    TCA_FQ_CODEL_CE_THRESHOLD, TCA_FQ_CODEL_DROP_BATCH_SIZE, TCA_FQ_CODEL_ECN,
    TCA_FQ_CODEL_FLOWS, TCA_FQ_CODEL_INTERVAL, TCA_FQ_CODEL_LIMIT,
    TCA_FQ_CODEL_MEMORY_LIMIT, TCA_FQ_CODEL_QUANTUM, TCA_FQ_CODEL_TARGET,
    TCA_FQ_CODEL_XSTATS_QDISC,
)
from .errors import StructDecodeError
from .policy import Policy, STRICT
from .structs import StructLayout, decode_or_none, unpack_u32
from .types import FqCodel, FqCodelXstats

logger = logging.getLogger(__name__)

# Every known option is a single u32
FQ_CODEL_OPTIONS = {
    TCA_FQ_CODEL_TARGET: 'target',
    TCA_FQ_CODEL_LIMIT: 'limit',
    TCA_FQ_CODEL_INTERVAL: 'interval',
    TCA_FQ_CODEL_ECN: 'ecn',
    TCA_FQ_CODEL_FLOWS: 'flows',
    TCA_FQ_CODEL_QUANTUM: 'quantum',
    TCA_FQ_CODEL_CE_THRESHOLD: 'ce_threshold',
    TCA_FQ_CODEL_DROP_BATCH_SIZE: 'drop_batch_size',
    TCA_FQ_CODEL_MEMORY_LIMIT: 'memory_limit',
}

# struct tc_fq_codel_xstats starts with a __u32 type selecting the union arm
TC_FQ_CODEL_XSTATS_TYPE = StructLayout('tc_fq_codel_xstats', [('type', 'I')])

# struct tc_fq_codel_qd_stats
TC_FQ_CODEL_QD_STATS = StructLayout('tc_fq_codel_qd_stats', [
    ('maxpacket', 'I'),
    ('drop_overlimit', 'I'),
    ('ecn_mark', 'I'),
    ('new_flow_count', 'I'),
    ('new_flows_len', 'I'),
    ('old_flows_len', 'I'),
    ('ce_mark', 'I'),
    ('memory_usage', 'I'),
    ('drop_overmemory', 'I'),
])


def decode_fq_codel(options: Iterable[Tuple[int, bytes]], policy: Policy = STRICT) -> FqCodel:
    """Decode FQ_CODEL's TCA_OPTIONS pairs; unknown ids are skipped"""
    values = {}
    for option, payload in options:
        name = FQ_CODEL_OPTIONS.get(option)
        if name is None:
            logger.debug("skipping unknown fq_codel option %d", option)
            continue
        value = decode_or_none(
            lambda data: unpack_u32(data, f"fq_codel {name}"),
            payload,
            policy.fail_on_unknown_option,
        )
        if value is not None:
            values[name] = value
    return FqCodel(**values)


def decode_fq_codel_xstats(data: bytes) -> FqCodelXstats:
    """
    Decode qdisc-level FQ_CODEL xstats.

    The class-level arm of the union (type 1) has a different layout and is
    rejected rather than read as qdisc counters.
    """
    xstats_type = TC_FQ_CODEL_XSTATS_TYPE.unpack(data)['type']
    if xstats_type != TCA_FQ_CODEL_XSTATS_QDISC:
        raise StructDecodeError('tc_fq_codel_xstats', f"unsupported xstats type {xstats_type}")
    return FqCodelXstats(**TC_FQ_CODEL_QD_STATS.unpack(data, TC_FQ_CODEL_XSTATS_TYPE.size))
