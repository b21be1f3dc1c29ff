"""
Kind-keyed codec registry.

The meaning of an option id depends on the message's TCA_KIND, so options
are resolved in a second pass: the walker hands over (option id, bytes)
pairs and the registry picks the decoder for the kind string.
"""

import logging
from typing import Callable, Dict, Iterable, Optional, Tuple

from .constants import CLSACT, FQ_CODEL, HTB
from .errors import StructDecodeError, UnknownKindError
from .fq_codel import TC_FQ_CODEL_QD_STATS, TC_FQ_CODEL_XSTATS_TYPE
from .fq_codel import decode_fq_codel, decode_fq_codel_xstats
from .htb import (
    TC_HTB_GLOB, TC_HTB_OPT_SIZE, TC_HTB_XSTATS, TC_RATESPEC,
    decode_htb, decode_htb_qdisc, decode_htb_xstats,
)
from .netlink import IFINFOMSG, TCMSG
from .policy import Policy, STRICT
from .stats import GNET_STATS_BASIC, GNET_STATS_QUEUE, TC_STATS
from .structs import decode_or_none
from .types import Class, Clsact, QDisc, XStats

logger = logging.getLogger(__name__)

Options = Iterable[Tuple[int, bytes]]


def decode_clsact(options: Options, policy: Policy = STRICT) -> Clsact:
    """clsact has no parameters; whatever the kernel nests is ignored"""
    return Clsact()


QDISC_CODECS: Dict[str, Callable[[Options, Policy], Optional[QDisc]]] = {
    HTB: decode_htb_qdisc,
    FQ_CODEL: decode_fq_codel,
    CLSACT: decode_clsact,
}

CLASS_CODECS: Dict[str, Callable[[Options, Policy], Optional[Class]]] = {
    HTB: decode_htb,
}

XSTATS_CODECS: Dict[str, Callable[[bytes], XStats]] = {
    HTB: decode_htb_xstats,
    FQ_CODEL: decode_fq_codel_xstats,
}


def _decode_options(codecs, kind: str, options: Optional[Options],
                    policy: Policy, raw: Optional[bytes]):
    if options is None and raw is None:
        return None

    codec = codecs.get(kind)
    if codec is None:
        if policy.fail_on_unknown_option:
            raise UnknownKindError(kind)
        logger.debug("no options codec for kind %r", kind)
        return None

    if options is None:
        # Options arrived as a bare struct, none of the registered kinds send that
        error = StructDecodeError(f"{kind} options", f"{len(raw)} bytes are not nested attributes")
        if policy.fail_on_unknown_option:
            raise error
        logger.debug("%s", error)
        return None

    return codec(options, policy)


def decode_qdisc_options(kind: str, options: Optional[Options],
                         policy: Policy = STRICT,
                         raw: Optional[bytes] = None) -> Optional[QDisc]:
    """
    Decode a qdisc's TCA_OPTIONS for its kind.

    Args:
        kind: TCA_KIND string
        options: (option id, bytes) pairs, None when TCA_OPTIONS was absent
        policy: fail_on_unknown_option decides unknown kinds and bad payloads
        raw: TCA_OPTIONS payload when it did not split into attributes

    Returns:
        The kind's qdisc parameters, or None when there is nothing to decode
        or the kind is unknown under a lenient policy

    Raises:
        UnknownKindError: no codec for kind and strict policy
        StructDecodeError: a payload is truncated and strict policy
    """
    return _decode_options(QDISC_CODECS, kind, options, policy, raw)


def decode_class_options(kind: str, options: Optional[Options],
                         policy: Policy = STRICT,
                         raw: Optional[bytes] = None) -> Optional[Class]:
    """Class counterpart of decode_qdisc_options()"""
    return _decode_options(CLASS_CODECS, kind, options, policy, raw)


def decode_xstats(kind: str, data: Optional[bytes], policy: Policy = STRICT) -> Optional[XStats]:
    """
    Decode TCA_XSTATS for its kind.

    An FQ_CODEL payload whose leading type is not the qdisc arm is a decode
    failure, never a misread.
    """
    if data is None:
        return None

    codec = XSTATS_CODECS.get(kind)
    if codec is None:
        if policy.fail_on_unknown_option:
            raise UnknownKindError(kind, 'xstats')
        logger.debug("no xstats codec for kind %r", kind)
        return None

    return decode_or_none(codec, data, policy.fail_on_unknown_option)


# ============================================================================
# ABI check
# ============================================================================

def python_struct_sizes() -> Dict[str, int]:
    """Sizes of the layouts the decoder reads, keyed like kernel_struct_sizes()"""
    return {
        'tcmsg': TCMSG.size,
        'ifinfomsg': IFINFOMSG.size,
        'tc_stats': TC_STATS.size,
        'gnet_stats_basic': GNET_STATS_BASIC.size,
        'gnet_stats_queue': GNET_STATS_QUEUE.size,
        'tc_ratespec': TC_RATESPEC.size,
        'tc_htb_opt': TC_HTB_OPT_SIZE,
        'tc_htb_glob': TC_HTB_GLOB.size,
        'tc_htb_xstats': TC_HTB_XSTATS.size,
        'tc_fq_codel_xstats': TC_FQ_CODEL_XSTATS_TYPE.size + TC_FQ_CODEL_QD_STATS.size,
    }


def check_abi(kernel_sizes: Dict[str, int]) -> Dict[str, Tuple[int, int]]:
    """
    Compare the decoder's layouts with the kernel header sizeof()s.

    A kernel struct larger than its layout is only tail padding (tc_stats
    and gnet_stats_basic are padded to 8 bytes) and is logged at debug. A
    smaller one means the layout reads past the kernel's struct and is
    logged as a warning.

    Returns:
        {struct name: (layout size, kernel size)} for every struct that is
        smaller on the kernel side
    """
    mismatches = {}
    for name, size in python_struct_sizes().items():
        kernel_size = kernel_sizes.get(name)
        if kernel_size is None or kernel_size == size:
            continue
        if kernel_size > size:
            logger.debug("%s: kernel size %d, layout reads %d", name, kernel_size, size)
            continue
        logger.warning("%s is %d bytes in the kernel headers but decoded as %d bytes",
                       name, kernel_size, size)
        mismatches[name] = (size, kernel_size)
    return mismatches
