"""Strictness policy threaded through every decode call."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Policy:
    """
    Decide whether unrecognized input fails the call or is skipped.

    Strict by default: a caller that has not opted into lenience never gets
    silently incomplete data back.

    Attributes:
        fail_on_unknown_netlink_message: unexpected message types in a dump
        fail_on_unknown_attribute: unknown TCA/Stats2 attribute kinds, and
            Stats/Stats2 structs that fail to decode
        fail_on_unknown_option: kind strings without a codec, and
            Options/XStats payloads that fail to decode
    """
    fail_on_unknown_netlink_message: bool = True
    fail_on_unknown_attribute: bool = True
    fail_on_unknown_option: bool = True

    @classmethod
    def lenient(cls) -> 'Policy':
        """Policy that skips everything it does not understand"""
        return cls(
            fail_on_unknown_netlink_message=False,
            fail_on_unknown_attribute=False,
            fail_on_unknown_option=False,
        )


STRICT = Policy()
