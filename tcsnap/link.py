"""
Link dump decoding, used to turn an interface name into its index.
"""

import logging
from typing import Iterable, List

from .attributes import decode_string
from .constants import IFLA_IFNAME, RTM_NEWLINK
from .errors import FramingError, LinkNotFoundError, MissingAttributeError, UnknownMessageTypeError
from .netlink import IFINFOMSG, NetlinkMessage, split_attributes
from .policy import Policy, STRICT
from .types import Link

logger = logging.getLogger(__name__)


def decode_link(message: NetlinkMessage) -> Link:
    """
    Index and name of one RTM_NEWLINK message.

    Raises:
        MissingAttributeError: the message has no IFLA_IFNAME
    """
    payload = message.payload
    if len(payload) < IFINFOMSG.size:
        raise FramingError(f"Truncated ifinfomsg: {len(payload)} < {IFINFOMSG.size} bytes")
    _, _, index, _, _ = IFINFOMSG.unpack_from(payload)

    for kind, value in split_attributes(payload, IFINFOMSG.size):
        if kind == IFLA_IFNAME:
            return Link(index=index, name=decode_string(value))

    raise MissingAttributeError('IFLA_IFNAME')


def decode_links(messages: Iterable[NetlinkMessage], policy: Policy = STRICT) -> List[Link]:
    links = []
    for message in messages:
        if message.msg_type == RTM_NEWLINK:
            links.append(decode_link(message))
        elif policy.fail_on_unknown_netlink_message:
            raise UnknownMessageTypeError(message.msg_type)
        else:
            logger.debug("skipping message type %d in link dump", message.msg_type)
    return links


def resolve_index(links: Iterable[Link], name: str) -> int:
    """Index of the first link called name"""
    for link in links:
        if link.name == name:
            return link.index
    raise LinkNotFoundError(name)
