"""
RTNetlink socket, request encoding and attribute framing.

The socket itself is a thin C library compiled through CFFI on first use:
it only creates, connects, sends and receives. Everything above the raw
datagram (message framing, attribute walking, struct decoding) is done in
Python so it can be exercised without a kernel.

Requirements:
    - Python 3.8+
    - cffi>=1.0.0
    - setuptools (required for Python 3.12+)
"""

from cffi import FFI
from collections import namedtuple
from errno import EACCES, EPERM
import itertools
import logging
import struct
import sys
from typing import Dict, List, Optional, Tuple

from .constants import (
    NLA_HDRLEN, NLA_ALIGNTO, NLA_TYPE_MASK, NLMSG_ALIGNTO, NLMSG_HDRLEN,
    NLM_F_REQUEST, NLM_F_DUMP, RTM_GETLINK, RTM_GETQDISC, RTM_GETTCLASS,
)
from .errors import FramingError, TransportError

logger = logging.getLogger(__name__)

# C library source code - socket plumbing only
C_SOURCE = r"""
#include <stdlib.h>
#include <string.h>
#include <unistd.h>
#include <errno.h>
#include <sys/socket.h>
#include <linux/netlink.h>
#include <linux/rtnetlink.h>
#include <linux/gen_stats.h>
#include <linux/pkt_sched.h>

// Verify we have minimum required kernel headers
#if !defined(NETLINK_ROUTE) || !defined(RTM_GETQDISC)
#error "Kernel headers too old - need Linux 2.6+ with rtnetlink support"
#endif

// Create a routing netlink socket connected to the kernel
int nl_create_socket(void) {
    int sock = socket(AF_NETLINK, SOCK_RAW | SOCK_CLOEXEC, NETLINK_ROUTE);
    if (sock < 0) {
        return -errno;
    }

    struct sockaddr_nl addr;
    memset(&addr, 0, sizeof(addr));
    addr.nl_family = AF_NETLINK;
    addr.nl_pid = 0;
    addr.nl_groups = 0;

    if (bind(sock, (struct sockaddr*)&addr, sizeof(addr)) < 0) {
        int err = errno;
        close(sock);
        return -err;
    }

    struct sockaddr_nl kernel;
    memset(&kernel, 0, sizeof(kernel));
    kernel.nl_family = AF_NETLINK;

    if (connect(sock, (struct sockaddr*)&kernel, sizeof(kernel)) < 0) {
        int err = errno;
        close(sock);
        return -err;
    }

    int bufsize = 1024 * 1024;
    setsockopt(sock, SOL_SOCKET, SO_RCVBUF, &bufsize, sizeof(bufsize));

    return sock;
}

void nl_close_socket(int sock) {
    if (sock >= 0) {
        close(sock);
    }
}

long nl_send(int sock, const void* data, size_t len) {
    ssize_t sent;
    do {
        sent = send(sock, data, len, 0);
    } while (sent < 0 && errno == EINTR);
    return sent < 0 ? -errno : (long)sent;
}

// Returns the full length of the next datagram. A datagram longer than len
// is left queued so it can be read again with a larger buffer.
long nl_recv(int sock, void* buf, size_t len) {
    ssize_t received;
    do {
        received = recv(sock, buf, len, MSG_PEEK | MSG_TRUNC);
    } while (received < 0 && errno == EINTR);
    if (received < 0) {
        return -errno;
    }
    if ((size_t)received > len) {
        return (long)received;
    }

    do {
        received = recv(sock, buf, len, 0);
    } while (received < 0 && errno == EINTR);
    return received < 0 ? -errno : (long)received;
}

// Kernel struct sizes, compared against the Python layouts
size_t nl_sizeof_tcmsg(void) { return sizeof(struct tcmsg); }
size_t nl_sizeof_ifinfomsg(void) { return sizeof(struct ifinfomsg); }
size_t nl_sizeof_tc_stats(void) { return sizeof(struct tc_stats); }
size_t nl_sizeof_gnet_stats_basic(void) { return sizeof(struct gnet_stats_basic); }
size_t nl_sizeof_gnet_stats_queue(void) { return sizeof(struct gnet_stats_queue); }
size_t nl_sizeof_tc_ratespec(void) { return sizeof(struct tc_ratespec); }
size_t nl_sizeof_tc_htb_opt(void) { return sizeof(struct tc_htb_opt); }
size_t nl_sizeof_tc_htb_glob(void) { return sizeof(struct tc_htb_glob); }
size_t nl_sizeof_tc_htb_xstats(void) { return sizeof(struct tc_htb_xstats); }
size_t nl_sizeof_tc_fq_codel_xstats(void) { return sizeof(struct tc_fq_codel_xstats); }
"""

ffi = FFI()

# Define C function signatures
ffi.cdef("""
int nl_create_socket(void);
void nl_close_socket(int sock);
long nl_send(int sock, const void* data, size_t len);
long nl_recv(int sock, void* buf, size_t len);
size_t nl_sizeof_tcmsg(void);
size_t nl_sizeof_ifinfomsg(void);
size_t nl_sizeof_tc_stats(void);
size_t nl_sizeof_gnet_stats_basic(void);
size_t nl_sizeof_gnet_stats_queue(void);
size_t nl_sizeof_tc_ratespec(void);
size_t nl_sizeof_tc_htb_opt(void);
size_t nl_sizeof_tc_htb_glob(void);
size_t nl_sizeof_tc_htb_xstats(void);
size_t nl_sizeof_tc_fq_codel_xstats(void);
""")

_lib = None


def load_library():
    """Compile (or load the cached build of) the socket library"""
    global _lib
    if _lib is not None:
        return _lib

    try:
        _lib = ffi.verify(C_SOURCE, modulename="tcsnap_lib_v2")
    except Exception as e:
        logger.error("Error compiling C library: %s", e)
        logger.error("This might be a CFFI caching issue. Try removing the __pycache__ directory.")
        if sys.version_info >= (3, 12):
            try:
                import setuptools  # @UnusedImport
            except ImportError:
                raise RuntimeError(
                    "Python 3.12+ requires setuptools.\n"
                    "Install it with: pip install setuptools"
                ) from e
        raise
    return _lib


def kernel_struct_sizes() -> Dict[str, int]:
    """sizeof() of every kernel struct the decoder extracts"""
    lib = load_library()
    return {
        'tcmsg': lib.nl_sizeof_tcmsg(),
        'ifinfomsg': lib.nl_sizeof_ifinfomsg(),
        'tc_stats': lib.nl_sizeof_tc_stats(),
        'gnet_stats_basic': lib.nl_sizeof_gnet_stats_basic(),
        'gnet_stats_queue': lib.nl_sizeof_gnet_stats_queue(),
        'tc_ratespec': lib.nl_sizeof_tc_ratespec(),
        'tc_htb_opt': lib.nl_sizeof_tc_htb_opt(),
        'tc_htb_glob': lib.nl_sizeof_tc_htb_glob(),
        'tc_htb_xstats': lib.nl_sizeof_tc_htb_xstats(),
        'tc_fq_codel_xstats': lib.nl_sizeof_tc_fq_codel_xstats(),
    }


class NetlinkSocket:
    """
    Blocking NETLINK_ROUTE socket connected to the kernel.

    Can be used with context manager or explicit open()/close():
        with NetlinkSocket() as sock:
            sock.send(request)
            size = sock.recv_into(buffer)
    """

    def __init__(self):
        self.sock = -1

    def open(self):
        """Create and connect the socket; no-op when already open"""
        if self.sock >= 0:
            return

        lib = load_library()
        sock = lib.nl_create_socket()
        if sock < 0:
            if -sock in (EPERM, EACCES):
                raise PermissionError(-sock, "Permission denied creating netlink socket")
            raise TransportError("Failed to create netlink socket", -sock)
        self.sock = sock
        logger.debug("opened netlink socket fd=%d", sock)

    def close(self):
        if self.sock >= 0:
            load_library().nl_close_socket(self.sock)
            logger.debug("closed netlink socket fd=%d", self.sock)
            self.sock = -1

    @property
    def is_open(self) -> bool:
        return self.sock >= 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        self.close()
        return False

    def send(self, data: bytes) -> int:
        if self.sock < 0:
            raise TransportError("Netlink socket is not open")
        sent = load_library().nl_send(self.sock, ffi.from_buffer(data), len(data))
        if sent < 0:
            raise TransportError("Failed to send netlink request", -sent)
        if sent != len(data):
            raise TransportError(f"Short netlink send: {sent} of {len(data)} bytes")
        return sent

    def recv_into(self, buffer: bytearray) -> int:
        """
        Read one datagram into buffer.

        Returns the datagram length. When that exceeds len(buffer) nothing
        was consumed and the datagram is still queued.
        """
        if self.sock < 0:
            raise TransportError("Netlink socket is not open")
        received = load_library().nl_recv(self.sock, ffi.from_buffer(buffer), len(buffer))
        if received < 0:
            raise TransportError("Failed to receive netlink response", -received)
        return received


# ============================================================================
# Message framing
# ============================================================================

NetlinkMessage = namedtuple('NetlinkMessage', 'msg_type flags sequence pid payload')

NLMSG_HEADER = struct.Struct('=IHHII')
NLA_HEADER = struct.Struct('=HH')

# struct tcmsg: family, pad[3], ifindex, handle, parent, info
TCMSG = struct.Struct('=BxxxIIII')
# struct ifinfomsg: family, pad, type, index, flags, change
IFINFOMSG = struct.Struct('=BxHIII')

_sequence = itertools.count(1)


def next_sequence() -> int:
    return next(_sequence) & 0xFFFFFFFF


def nlmsg_align(length: int) -> int:
    return (length + NLMSG_ALIGNTO - 1) & ~(NLMSG_ALIGNTO - 1)


def nla_align(length: int) -> int:
    return (length + NLA_ALIGNTO - 1) & ~(NLA_ALIGNTO - 1)


def encode_request(message_type: int, sequence: Optional[int] = None,
                   index: int = 0, pid: int = 0) -> bytes:
    """
    Build one REQUEST|DUMP message.

    Args:
        message_type: RTM_GETQDISC, RTM_GETTCLASS or RTM_GETLINK
        sequence: sequence number; a fresh one is allocated when None
        index: interface index, only meaningful for RTM_GETTCLASS

    Returns:
        Serialized netlink message
    """
    if sequence is None:
        sequence = next_sequence()

    if message_type in (RTM_GETQDISC, RTM_GETTCLASS):
        body = TCMSG.pack(0, index, 0, 0, 0)
    elif message_type == RTM_GETLINK:
        body = IFINFOMSG.pack(0, 0, 0, 0, 0)
    else:
        raise ValueError(f"Unsupported dump request type: {message_type}")

    length = NLMSG_HDRLEN + len(body)
    return NLMSG_HEADER.pack(length, message_type, NLM_F_REQUEST | NLM_F_DUMP,
                             sequence, pid) + body


def parse_header(data: bytes, offset: int = 0) -> Tuple[int, int, int, int, int]:
    """(length, type, flags, sequence, pid) of the message at offset"""
    if len(data) - offset < NLMSG_HDRLEN:
        raise FramingError(
            f"Truncated netlink header: {len(data) - offset} < {NLMSG_HDRLEN} bytes"
        )
    return NLMSG_HEADER.unpack_from(data, offset)


def split_attributes(data: bytes, offset: int = 0) -> List[Tuple[int, bytes]]:
    """
    Split one level of netlink attributes into (kind, payload) pairs.

    The kind has NLA_F_NESTED/NLA_F_NET_BYTEORDER masked off. Fewer than
    NLA_HDRLEN trailing bytes are treated as alignment padding.
    """
    attributes = []
    end = len(data)
    while end - offset >= NLA_HDRLEN:
        length, kind = NLA_HEADER.unpack_from(data, offset)
        if length < NLA_HDRLEN:
            raise FramingError(f"Attribute length {length} shorter than its header")
        if offset + length > end:
            raise FramingError(
                f"Attribute {kind & NLA_TYPE_MASK} overruns buffer: "
                f"{length} > {end - offset} bytes"
            )
        attributes.append((kind & NLA_TYPE_MASK, bytes(data[offset + NLA_HDRLEN:offset + length])))
        offset += nla_align(length)
    return attributes
