"""
Traffic control dump queries.

TrafficControlQuery issues the RTM_GET* dumps over one netlink socket and
decodes the replies. The module-level functions are one-shot shortcuts.
"""

import logging
from typing import List, Optional

from .codecs import check_abi
from .constants import RTM_GETLINK, RTM_GETQDISC, RTM_GETTCLASS
from .dump import DEFAULT_BUFFER_SIZE, receive_dump
from .link import decode_links, resolve_index
from .netlink import NetlinkSocket, encode_request, kernel_struct_sizes
from .policy import Policy, STRICT
from .tc import decode_messages
from .types import Link, TcRecord

logger = logging.getLogger(__name__)

_abi_checked = False


def _check_abi_once():
    global _abi_checked
    if _abi_checked:
        return
    _abi_checked = True
    check_abi(kernel_struct_sizes())


class TrafficControlQuery:
    """
    Query qdiscs, classes and links using RTNETLINK dumps.

    Can be used with context manager or direct calls:
        # Option 1: Context manager (socket auto-closed)
        with TrafficControlQuery() as tcq:
            qdiscs = tcq.get_qdiscs()
            classes = tcq.get_classes()

        # Option 2: Direct call (socket managed per-call)
        records = TrafficControlQuery(Policy.lenient()).get_tc_stats()

    A connection passed in (anything with send() and recv_into()) is used
    as is and never closed by the query.
    """

    def __init__(self, policy: Optional[Policy] = None, connection=None,
                 buffer_size: int = DEFAULT_BUFFER_SIZE):
        """
        Args:
            policy: strictness for every decode call, strict when None
            connection: pre-opened connection to use instead of a socket
            buffer_size: bytes per receive call
        """
        self.policy = policy if policy is not None else STRICT
        self.connection = connection
        self.buffer_size = buffer_size
        self._owns_connection = connection is None

    @property
    def is_open(self) -> bool:
        return self.connection is not None

    def open(self):
        """Explicitly open the netlink socket"""
        if self.connection is not None:
            return

        sock = NetlinkSocket()
        sock.open()
        try:
            _check_abi_once()
        except Exception:
            sock.close()
            raise
        self.connection = sock

    def close(self):
        """Explicitly close the netlink socket"""
        if self._owns_connection and self.connection is not None:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        self.close()
        return False

    def _auto_open(self) -> bool:
        """Open for a single call; True when the caller must close again"""
        if self.connection is not None:
            return False
        self.open()
        return True

    def _dump(self, message_type: int, index: int = 0):
        request = encode_request(message_type, index=index)
        return receive_dump(self.connection, request, self.policy, self.buffer_size)

    def get_qdiscs(self) -> List[TcRecord]:
        """Every qdisc on every interface, in kernel order"""
        need_auto_close = self._auto_open()
        try:
            return decode_messages(self._dump(RTM_GETQDISC), self.policy)
        finally:
            if need_auto_close:
                self.close()

    def get_links(self) -> List[Link]:
        need_auto_close = self._auto_open()
        try:
            return decode_links(self._dump(RTM_GETLINK), self.policy)
        finally:
            if need_auto_close:
                self.close()

    def get_classes_for_index(self, index: int) -> List[TcRecord]:
        """Classes of one interface; the kernel needs the index to dump classes"""
        need_auto_close = self._auto_open()
        try:
            return decode_messages(self._dump(RTM_GETTCLASS, index), self.policy)
        finally:
            if need_auto_close:
                self.close()

    def get_classes_for_name(self, name: str) -> List[TcRecord]:
        """
        Classes of the interface called name.

        Raises:
            LinkNotFoundError: no interface has that name
        """
        need_auto_close = self._auto_open()
        try:
            index = resolve_index(self.get_links(), name)
            logger.debug("interface %s has index %d", name, index)
            return self.get_classes_for_index(index)
        finally:
            if need_auto_close:
                self.close()

    def get_classes(self) -> List[TcRecord]:
        """Classes of every interface, one class dump per link"""
        need_auto_close = self._auto_open()
        try:
            records = []
            for link in self.get_links():
                records.extend(self.get_classes_for_index(link.index))
            return records
        finally:
            if need_auto_close:
                self.close()

    def get_tc_stats(self) -> List[TcRecord]:
        """All qdiscs followed by all classes"""
        need_auto_close = self._auto_open()
        try:
            return self.get_qdiscs() + self.get_classes()
        finally:
            if need_auto_close:
                self.close()


def list_qdiscs(policy: Optional[Policy] = None, connection=None) -> List[TcRecord]:
    return TrafficControlQuery(policy, connection).get_qdiscs()


def list_classes(policy: Optional[Policy] = None, connection=None) -> List[TcRecord]:
    return TrafficControlQuery(policy, connection).get_classes()


def classes_for_index(index: int, policy: Optional[Policy] = None,
                      connection=None) -> List[TcRecord]:
    return TrafficControlQuery(policy, connection).get_classes_for_index(index)


def classes_for_name(name: str, policy: Optional[Policy] = None,
                     connection=None) -> List[TcRecord]:
    return TrafficControlQuery(policy, connection).get_classes_for_name(name)


def list_links(policy: Optional[Policy] = None, connection=None) -> List[Link]:
    return TrafficControlQuery(policy, connection).get_links()


def tc_stats(policy: Optional[Policy] = None, connection=None) -> List[TcRecord]:
    return TrafficControlQuery(policy, connection).get_tc_stats()
