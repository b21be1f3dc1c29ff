"""
Exception hierarchy for tcsnap.

Every failure raised by the decode pipeline derives from TcError, so callers
can catch one type and still inspect which layer failed.
"""

import os
from typing import List, Optional


class TcError(Exception):
    """Base class for all traffic control decode and transport errors"""


class TransportError(TcError):
    """Socket creation, connect, send or receive failed"""

    def __init__(self, message: str, errno: Optional[int] = None):
        if errno:
            message = f"{message}: {os.strerror(errno)} (errno {errno})"
        super().__init__(message)
        self.errno = errno


class KernelError(TcError):
    """The kernel answered the dump with an explicit netlink error frame"""

    def __init__(self, errno: int, message: Optional[str] = None):
        if message is None:
            message = f"netlink error: {os.strerror(errno)} (errno {errno})"
        super().__init__(message)
        self.errno = errno


class FramingError(TcError):
    """A declared length is inconsistent with the bytes received"""


class UnknownMessageTypeError(TcError):
    """A dump contained a message type that was not expected"""

    def __init__(self, message_type: int):
        super().__init__(f"Unknown netlink message type: {message_type}")
        self.message_type = message_type


class UnknownAttributeError(TcError):
    """A top-level or Stats2 attribute kind is not recognized"""

    def __init__(self, kind: int, container: str = 'TCA'):
        super().__init__(f"Unknown {container} attribute: {kind}")
        self.kind = kind
        self.container = container


class UnknownKindError(TcError):
    """No codec is registered for a qdisc/class kind string"""

    def __init__(self, kind: str, what: str = 'options'):
        super().__init__(f"Kind not implemented: {what} for {kind!r}")
        self.kind = kind
        self.what = what


class StructDecodeError(TcError):
    """A fixed-size kernel struct could not be extracted"""

    def __init__(self, name: str, reason: str):
        super().__init__(f"Failed to decode {name}: {reason}")
        self.name = name
        self.reason = reason


class Stats2DecodeError(TcError):
    """One or more Stats2 sub-blocks failed to decode"""

    def __init__(self, errors: List[StructDecodeError]):
        joined = ', '.join(str(e) for e in errors)
        super().__init__(f"Failed to decode stats2: {joined}")
        self.errors = errors


class MissingAttributeError(TcError):
    """A required attribute was absent from a message"""

    def __init__(self, attribute: str):
        super().__init__(f"Missing attribute: {attribute}")
        self.attribute = attribute


class LinkNotFoundError(TcError):
    """No link carries the requested interface name"""

    def __init__(self, name: str):
        super().__init__(f"No such interface: {name!r}")
        self.name = name
