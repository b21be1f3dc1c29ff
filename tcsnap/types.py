"""
Decoded traffic control objects.

All records are frozen dataclasses: built once by the decoder and never
mutated afterwards. Variant types (QDisc, Class, XStats) are plain unions;
each member carries its kernel kind string in ``KIND``.
"""

from dataclasses import dataclass, asdict
from typing import Any, ClassVar, Dict, Optional, Union

from .constants import TC_H_ROOT


# ============================================================================
# Statistics
# ============================================================================

@dataclass(frozen=True)
class Stats:
    """Legacy combined counters, ``struct tc_stats``"""
    bytes: int = 0
    packets: int = 0
    drops: int = 0
    overlimits: int = 0
    bps: int = 0
    pps: int = 0
    qlen: int = 0
    backlog: int = 0


@dataclass(frozen=True)
class StatsBasic:
    """``struct gnet_stats_basic``"""
    bytes: int = 0
    packets: int = 0


@dataclass(frozen=True)
class StatsQueue:
    """``struct gnet_stats_queue``"""
    qlen: int = 0
    backlog: int = 0
    drops: int = 0
    requeues: int = 0
    overlimits: int = 0


@dataclass(frozen=True)
class Stats2:
    """Segmented counters from the TCA_STATS2 container"""
    basic: Optional[StatsBasic] = None
    queue: Optional[StatsQueue] = None


# ============================================================================
# HTB
# ============================================================================

@dataclass(frozen=True)
class RateSpec:
    """``struct tc_ratespec``"""
    cell_log: int = 0
    linklayer: int = 0
    overhead: int = 0
    cell_align: int = 0
    mpu: int = 0
    rate: int = 0


@dataclass(frozen=True)
class HtbGlob:
    """HTB qdisc init parameters, ``struct tc_htb_glob``"""
    KIND: ClassVar[str] = 'htb'

    version: int = 0
    rate2quantum: int = 0
    defcls: int = 0
    debug: int = 0
    direct_pkts: int = 0


@dataclass(frozen=True)
class HtbOpt:
    """HTB class parameters, ``struct tc_htb_opt``"""
    rate: RateSpec = RateSpec()
    ceil: RateSpec = RateSpec()
    buffer: int = 0
    cbuffer: int = 0
    quantum: int = 0
    level: int = 0
    prio: int = 0


@dataclass(frozen=True)
class Htb:
    """
    Everything an HTB class reports in TCA_OPTIONS.

    ``ctab``/``rtab`` are kept as opaque bytes. The 64-bit rate/ceil and the
    direct queue length are None when the kernel did not send them.
    """
    KIND: ClassVar[str] = 'htb'

    parms: Optional[HtbOpt] = None
    init: Optional[HtbGlob] = None
    ctab: bytes = b''
    rtab: bytes = b''
    direct_qlen: Optional[int] = None
    rate64: Optional[int] = None
    ceil64: Optional[int] = None


@dataclass(frozen=True)
class HtbXstats:
    """``struct tc_htb_xstats``; tokens and ctokens are signed"""
    KIND: ClassVar[str] = 'htb'

    lends: int = 0
    borrows: int = 0
    giants: int = 0
    tokens: int = 0
    ctokens: int = 0


# ============================================================================
# FQ_CODEL
# ============================================================================

@dataclass(frozen=True)
class FqCodel:
    """FQ_CODEL qdisc parameters; options the kernel omitted stay 0"""
    KIND: ClassVar[str] = 'fq_codel'

    target: int = 0
    limit: int = 0
    interval: int = 0
    ecn: int = 0
    flows: int = 0
    quantum: int = 0
    ce_threshold: int = 0
    drop_batch_size: int = 0
    memory_limit: int = 0


@dataclass(frozen=True)
class FqCodelXstats:
    """``struct tc_fq_codel_qd_stats``"""
    KIND: ClassVar[str] = 'fq_codel'

    maxpacket: int = 0
    drop_overlimit: int = 0
    ecn_mark: int = 0
    new_flow_count: int = 0
    new_flows_len: int = 0
    old_flows_len: int = 0
    ce_mark: int = 0
    memory_usage: int = 0
    drop_overmemory: int = 0


# ============================================================================
# CLSACT
# ============================================================================

@dataclass(frozen=True)
class Clsact:
    """clsact carries no parameters"""
    KIND: ClassVar[str] = 'clsact'


QDisc = Union[HtbGlob, FqCodel, Clsact]
Class = Htb
XStats = Union[HtbXstats, FqCodelXstats]


# ============================================================================
# Records
# ============================================================================

@dataclass(frozen=True)
class TcHeader:
    """``struct tcmsg`` without its padding"""
    family: int = 0
    index: int = 0
    handle: int = 0
    parent: int = 0
    info: int = 0


@dataclass(frozen=True)
class TcRecord:
    """
    One decoded qdisc or class.

    Only one of ``qdisc``/``tclass`` is ever populated, depending on which
    dump the record came from. ``stats`` and ``stats2`` are decoded
    independently; the kernel sends both and neither is preferred.
    """
    index: int
    handle: int
    parent: int
    kind: str = ''
    stats: Optional[Stats] = None
    stats2: Optional[Stats2] = None
    qdisc: Optional[QDisc] = None
    tclass: Optional[Class] = None
    xstats: Optional[XStats] = None
    hw_offload: Optional[int] = None
    chain: Optional[int] = None
    is_class: bool = False

    @property
    def is_root(self) -> bool:
        return self.parent == TC_H_ROOT

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict; bytes become hex strings, variants gain 'kind'"""
        result = {
            'index': self.index,
            'handle': format_handle(self.handle),
            'parent': 'root' if self.is_root else format_handle(self.parent),
            'kind': self.kind,
            'role': 'class' if self.is_class else 'qdisc',
        }
        for name, value in (('stats', self.stats), ('stats2', self.stats2)):
            if value is not None:
                result[name] = asdict(value)
        for name, value in (('qdisc', self.qdisc), ('class', self.tclass),
                            ('xstats', self.xstats)):
            if value is not None:
                result[name] = dict(_hexlify(asdict(value)), kind=value.KIND)
        if self.hw_offload is not None:
            result['hw_offload'] = self.hw_offload
        if self.chain is not None:
            result['chain'] = self.chain
        return result


@dataclass(frozen=True)
class Link:
    """Interface index and name from a link dump"""
    index: int
    name: str


def format_handle(handle: int) -> str:
    """Render a handle the way tc(8) does, major:minor in hex"""
    major, minor = handle >> 16, handle & 0xFFFF
    if minor:
        return f"{major:x}:{minor:x}"
    return f"{major:x}:"


def _hexlify(values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value.hex() if isinstance(value, bytes) else value
        for key, value in values.items()
    }
