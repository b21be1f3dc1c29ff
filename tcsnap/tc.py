"""
Record assembly for qdisc and class messages.

Qdiscs and classes share the tcmsg wire shape; the only differences are the
message type and which of TcRecord.qdisc / TcRecord.tclass gets filled.
"""

import logging
from typing import Iterable, List

from .attributes import TcAttributes, walk_tc_attributes
from .codecs import decode_class_options, decode_qdisc_options, decode_xstats
from .constants import RTM_NEWLINK, RTM_NEWQDISC, RTM_NEWTCLASS
from .errors import FramingError, UnknownMessageTypeError
from .netlink import NetlinkMessage, TCMSG, split_attributes
from .policy import Policy, STRICT
from .stats import parse_stats, parse_stats2
from .structs import decode_or_none
from .types import TcHeader, TcRecord

logger = logging.getLogger(__name__)


def parse_tc_header(payload: bytes) -> TcHeader:
    """struct tcmsg at the start of a qdisc/class message"""
    if len(payload) < TCMSG.size:
        raise FramingError(f"Truncated tcmsg: {len(payload)} < {TCMSG.size} bytes")
    family, index, handle, parent, info = TCMSG.unpack_from(payload)
    return TcHeader(family=family, index=index, handle=handle, parent=parent, info=info)


def assemble(header: TcHeader, attrs: TcAttributes, is_class: bool = False,
             policy: Policy = STRICT) -> TcRecord:
    """
    Combine a tcmsg header with its walked attributes.

    Stats and Stats2 are decoded independently of each other. Exactly one
    of qdisc/tclass is considered, depending on is_class.
    """
    stats = None
    if attrs.stats is not None:
        stats = decode_or_none(parse_stats, attrs.stats, policy.fail_on_unknown_attribute)

    stats2 = None
    if attrs.stats2 is not None:
        stats2 = parse_stats2(attrs.stats2, policy)

    qdisc = None
    tclass = None
    if attrs.has_options:
        if is_class:
            tclass = decode_class_options(attrs.kind, attrs.options, policy, attrs.options_raw)
        else:
            qdisc = decode_qdisc_options(attrs.kind, attrs.options, policy, attrs.options_raw)

    return TcRecord(
        index=header.index,
        handle=header.handle,
        parent=header.parent,
        kind=attrs.kind,
        stats=stats,
        stats2=stats2,
        qdisc=qdisc,
        tclass=tclass,
        xstats=decode_xstats(attrs.kind, attrs.xstats, policy),
        hw_offload=attrs.hw_offload,
        chain=attrs.chain,
        is_class=is_class,
    )


def decode_tc_message(message: NetlinkMessage, policy: Policy = STRICT) -> TcRecord:
    """Decode one RTM_NEWQDISC or RTM_NEWTCLASS message"""
    if message.msg_type not in (RTM_NEWQDISC, RTM_NEWTCLASS):
        raise UnknownMessageTypeError(message.msg_type)

    header = parse_tc_header(message.payload)
    attrs = walk_tc_attributes(split_attributes(message.payload, TCMSG.size), policy)
    return assemble(header, attrs, message.msg_type == RTM_NEWTCLASS, policy)


def decode_messages(messages: Iterable[NetlinkMessage], policy: Policy = STRICT) -> List[TcRecord]:
    """
    Decode already received messages, qdiscs and classes in any order.

    Link messages are passed over; any other type follows
    policy.fail_on_unknown_netlink_message.
    """
    records = []
    for message in messages:
        if message.msg_type in (RTM_NEWQDISC, RTM_NEWTCLASS):
            records.append(decode_tc_message(message, policy))
        elif message.msg_type == RTM_NEWLINK:
            continue
        elif policy.fail_on_unknown_netlink_message:
            raise UnknownMessageTypeError(message.msg_type)
        else:
            logger.debug("skipping message type %d", message.msg_type)
    return records
