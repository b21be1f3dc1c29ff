"""
HTB (Hierarchy Token Bucket) options and extended stats.

HTB reports its init parameters (tc_htb_glob) on the qdisc and its shaping
parameters (tc_htb_opt) on each class, both inside TCA_OPTIONS. Layouts are
from include/uapi/linux/pkt_sched.h.
"""

import logging
from typing import Iterable, Optional, Tuple

from .constants import (
    TCA_HTB_CEIL64, TCA_HTB_CTAB, TCA_HTB_DIRECT_QLEN, TCA_HTB_INIT,
    TCA_HTB_OFFLOAD, TCA_HTB_PAD, TCA_HTB_PARMS, TCA_HTB_RATE64,
    TCA_HTB_RTAB, TCA_HTB_UNSPEC,
)
from .errors import StructDecodeError
from .policy import Policy, STRICT
from .structs import StructLayout, decode_or_none, unpack_u32, unpack_u64
from .types import Htb, HtbGlob, HtbOpt, HtbXstats, RateSpec

logger = logging.getLogger(__name__)

# struct tc_ratespec
TC_RATESPEC = StructLayout('tc_ratespec', [
    ('cell_log', 'B'),
    ('linklayer', 'B'),
    ('overhead', 'H'),
    ('cell_align', 'h'),
    ('mpu', 'H'),
    ('rate', 'I'),
])

# struct tc_htb_opt: two tc_ratespec followed by these
TC_HTB_OPT_TAIL = StructLayout('tc_htb_opt', [
    ('buffer', 'I'),
    ('cbuffer', 'I'),
    ('quantum', 'I'),
    ('level', 'I'),
    ('prio', 'I'),
])
TC_HTB_OPT_SIZE = 2 * TC_RATESPEC.size + TC_HTB_OPT_TAIL.size

# struct tc_htb_glob
TC_HTB_GLOB = StructLayout('tc_htb_glob', [
    ('version', 'I'),
    ('rate2quantum', 'I'),
    ('defcls', 'I'),
    ('debug', 'I'),
    ('direct_pkts', 'I'),
])

# struct tc_htb_xstats
TC_HTB_XSTATS = StructLayout('tc_htb_xstats', [
    ('lends', 'I'),
    ('borrows', 'I'),
    ('giants', 'I'),
    ('tokens', 'i'),
    ('ctokens', 'i'),
])

# Options that carry nothing to decode
IGNORED_OPTIONS = frozenset([TCA_HTB_UNSPEC, TCA_HTB_PAD, TCA_HTB_OFFLOAD])


def unpack_htb_opt(data: bytes) -> HtbOpt:
    if len(data) < TC_HTB_OPT_SIZE:
        raise StructDecodeError('tc_htb_opt', f"need {TC_HTB_OPT_SIZE} bytes, got {len(data)}")
    rate = RateSpec(**TC_RATESPEC.unpack(data, 0))
    ceil = RateSpec(**TC_RATESPEC.unpack(data, TC_RATESPEC.size))
    return HtbOpt(rate=rate, ceil=ceil, **TC_HTB_OPT_TAIL.unpack(data, 2 * TC_RATESPEC.size))


def unpack_htb_glob(data: bytes) -> HtbGlob:
    return HtbGlob(**TC_HTB_GLOB.unpack(data))


def decode_htb(options: Iterable[Tuple[int, bytes]], policy: Policy = STRICT) -> Htb:
    """
    Decode HTB's TCA_OPTIONS pairs.

    A truncated tc_htb_opt or tc_htb_glob follows the option policy. The
    64-bit rate/ceil and direct_qlen extensions are absent when missing or
    truncated; unknown option ids are skipped.
    """
    strict = policy.fail_on_unknown_option
    values = {}

    for option, payload in options:
        if option == TCA_HTB_PARMS:
            values['parms'] = decode_or_none(unpack_htb_opt, payload, strict)
        elif option == TCA_HTB_INIT:
            values['init'] = decode_or_none(unpack_htb_glob, payload, strict)
        elif option == TCA_HTB_CTAB:
            values['ctab'] = bytes(payload)
        elif option == TCA_HTB_RTAB:
            values['rtab'] = bytes(payload)
        elif option == TCA_HTB_DIRECT_QLEN:
            values['direct_qlen'] = decode_or_none(
                lambda data: unpack_u32(data, 'htb direct_qlen'), payload, False)
        elif option == TCA_HTB_RATE64:
            values['rate64'] = decode_or_none(
                lambda data: unpack_u64(data, 'htb rate64'), payload, False)
        elif option == TCA_HTB_CEIL64:
            values['ceil64'] = decode_or_none(
                lambda data: unpack_u64(data, 'htb ceil64'), payload, False)
        elif option in IGNORED_OPTIONS:
            continue
        else:
            logger.debug("skipping unknown htb option %d", option)

    return Htb(**values)


def decode_htb_qdisc(options: Iterable[Tuple[int, bytes]],
                     policy: Policy = STRICT) -> Optional[HtbGlob]:
    """Qdisc role: only the init parameters, None when not reported"""
    return decode_htb(options, policy).init


def decode_htb_xstats(data: bytes) -> HtbXstats:
    return HtbXstats(**TC_HTB_XSTATS.unpack(data))
