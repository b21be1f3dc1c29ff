"""
Netlink dump reassembly.

A dump reply is streamed over one or more datagrams. receive_dump() drains
the socket until the kernel's NLMSG_DONE, slicing each datagram into
messages by their self-declared length and carrying an incomplete trailing
message over to the next read.

A connection reports the full length of a datagram that does not fit the
buffer without consuming it; the buffer is then grown and the read retried.
"""

from errno import ENOBUFS
import logging
import struct
from typing import List

from .constants import (
    DUMP_REPLY_TYPES, NLMSG_DONE, NLMSG_ERROR, NLMSG_HDRLEN, NLMSG_NOOP,
    NLMSG_OVERRUN,
)
from .errors import (
    FramingError, KernelError, TransportError, UnknownMessageTypeError,
)
from .netlink import NetlinkMessage, nlmsg_align, parse_header
from .policy import Policy, STRICT

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 4096

# Larger than any SO_RCVBUF the socket library asks for
MAX_MESSAGE_SIZE = 1 << 24

_ERRNO = struct.Struct('=i')


def _error_code(payload: bytes) -> int:
    """Negated errno carried at the start of NLMSG_ERROR / NLMSG_DONE"""
    if len(payload) < _ERRNO.size:
        raise FramingError(f"Truncated netlink error payload: {len(payload)} bytes")
    return _ERRNO.unpack_from(payload)[0]


def receive_dump(connection, request: bytes, policy: Policy = STRICT,
                 buffer_size: int = DEFAULT_BUFFER_SIZE) -> List[NetlinkMessage]:
    """
    Send a dump request and collect every reply message.

    Args:
        connection: object with send(bytes) and recv_into(bytearray) -> int
        request: serialized RTM_GET* request with NLM_F_DUMP set
        policy: decides whether unexpected message types fail the dump
        buffer_size: initial bytes read per recv_into() call

    Returns:
        Reply messages in kernel emission order, control messages removed

    Raises:
        TransportError: the connection failed or closed mid-dump
        KernelError: the kernel answered with an error frame
        FramingError: a declared length does not match the bytes received
        UnknownMessageTypeError: unexpected message and strict policy
    """
    _, request_type, _, sequence, _ = parse_header(request)
    expected = DUMP_REPLY_TYPES.get(request_type)

    connection.send(request)

    buffer = bytearray(buffer_size)
    pending = b''
    messages = []
    retry_size = None

    while True:
        size = connection.recv_into(buffer)
        if size <= 0:
            raise TransportError("Netlink socket closed before end of dump")
        if retry_size is not None and size != retry_size:
            raise FramingError(
                f"Datagram of {retry_size} bytes was consumed by a short read"
            )
        retry_size = None
        if size > len(buffer):
            # Datagram did not fit and is still queued
            if size > MAX_MESSAGE_SIZE:
                raise FramingError(f"Datagram length {size} exceeds {MAX_MESSAGE_SIZE} bytes")
            logger.debug("growing receive buffer from %d to %d bytes", len(buffer), size)
            buffer = bytearray(nlmsg_align(size))
            retry_size = size
            continue

        data = pending + bytes(buffer[:size])
        pending = b''
        offset = 0

        while offset < len(data):
            if len(data) - offset < NLMSG_HDRLEN:
                pending = data[offset:]
                break

            length, msg_type, flags, msg_seq, pid = parse_header(data, offset)

            if length == 0:
                logger.debug("zero-length message, dropping %d trailing bytes",
                             len(data) - offset)
                break
            if length < NLMSG_HDRLEN:
                raise FramingError(f"Message length {length} shorter than its header")
            if length > MAX_MESSAGE_SIZE:
                raise FramingError(f"Message length {length} exceeds {MAX_MESSAGE_SIZE} bytes")
            if offset + length > len(data):
                # Rest of this message arrives with the next read
                pending = data[offset:]
                break

            payload = data[offset + NLMSG_HDRLEN:offset + length]
            offset += nlmsg_align(length)

            if msg_seq != sequence:
                logger.debug("skipping message type %d with sequence %d (expected %d)",
                             msg_type, msg_seq, sequence)
                continue

            if msg_type == NLMSG_DONE:
                if len(payload) >= _ERRNO.size:
                    error = _error_code(payload)
                    if error < 0:
                        raise KernelError(-error)
                logger.debug("dump %d complete: %d messages", sequence, len(messages))
                return messages

            if msg_type == NLMSG_ERROR:
                error = _error_code(payload)
                if error == 0:
                    continue  # ACK
                raise KernelError(-error)

            if msg_type == NLMSG_OVERRUN:
                raise KernelError(ENOBUFS, "netlink overrun: dump data was lost")

            if msg_type == NLMSG_NOOP:
                continue

            if msg_type != expected:
                if policy.fail_on_unknown_netlink_message:
                    raise UnknownMessageTypeError(msg_type)
                logger.debug("skipping unexpected message type %d", msg_type)
                continue

            messages.append(NetlinkMessage(msg_type, flags, msg_seq, pid, payload))
