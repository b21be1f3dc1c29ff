#!/usr/bin/env python3
"""
tcsnap - Traffic Control Snapshot Tool

Captures the kernel's traffic control state as JSON:
- Queueing disciplines on every interface (kind, handle, parent, options)
- Traffic classes per interface (HTB rate/ceil, tokens)
- Legacy and segmented queueing statistics
- Interface index/name pairs

Requirements:
    - Python 3.8+
    - cffi>=1.0.0

Usage:
    tcsnap                          # Qdiscs, classes and links as JSON
    tcsnap --qdiscs                 # Qdiscs only
    tcsnap --classes -d eth0        # Classes of one interface
    tcsnap --lenient                # Skip kinds/attributes not understood
    tcsnap --version                # Show version
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, Optional

from . import __version__
from .errors import (
    Stats2DecodeError, StructDecodeError, TcError, UnknownAttributeError,
    UnknownKindError, UnknownMessageTypeError,
)
from .link import resolve_index
from .policy import Policy
from .query import TrafficControlQuery

logger = logging.getLogger(__name__)

# Failures a lenient policy would have skipped
POLICY_ERRORS = (
    UnknownMessageTypeError, UnknownAttributeError, UnknownKindError,
    StructDecodeError, Stats2DecodeError,
)


def get_version() -> str:
    return __version__


def capture_tc_snapshot(query: TrafficControlQuery, qdiscs: bool = True,
                        classes: bool = True, links: bool = True,
                        device: Optional[str] = None) -> Dict[str, Any]:
    """
    Collect the requested sections over one open query.

    With a device, qdiscs and classes are restricted to that interface.
    """
    snapshot = {}
    link_list = query.get_links() if (links or classes or device) else []

    index = None
    if device is not None:
        index = resolve_index(link_list, device)

    if qdiscs:
        records = query.get_qdiscs()
        if index is not None:
            records = [record for record in records if record.index == index]
        snapshot['qdiscs'] = [record.to_dict() for record in records]

    if classes:
        if index is not None:
            records = query.get_classes_for_index(index)
        else:
            records = []
            for link in link_list:
                records.extend(query.get_classes_for_index(link.index))
        snapshot['classes'] = [record.to_dict() for record in records]

    if links:
        snapshot['links'] = [{'index': link.index, 'name': link.name} for link in link_list]

    snapshot['_metadata'] = {
        'version': get_version(),
        'python_version': f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        'policy': 'lenient' if not query.policy.fail_on_unknown_option else 'strict',
    }
    return snapshot


def main() -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        prog='tcsnap',
        description='Traffic control snapshot tool - dumps qdiscs, classes and their statistics',
        epilog=(
            'Note: classes of some interfaces are only visible to root.\n'
            'Kinds without a decoder (pfifo_fast, sfq, ...) fail unless --lenient is given.'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('--version', action='version',
                        version=f'tcsnap {get_version()}')
    parser.add_argument('--qdiscs', action='store_true',
                        help='Include qdiscs (default: all sections)')
    parser.add_argument('--classes', action='store_true',
                        help='Include classes (default: all sections)')
    parser.add_argument('--links', action='store_true',
                        help='Include interface index/name pairs (default: all sections)')
    parser.add_argument('--device', '-d', metavar='NAME',
                        help='Only this interface')
    parser.add_argument('--lenient', action='store_true',
                        help='Skip message types, attributes and kinds not understood')
    parser.add_argument('--compact', '-c', action='store_true',
                        help='Compact JSON output (default: pretty-print)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging on stderr')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )

    select_all = not (args.qdiscs or args.classes or args.links)
    policy = Policy.lenient() if args.lenient else Policy()

    try:
        with TrafficControlQuery(policy) as query:
            snapshot = capture_tc_snapshot(
                query,
                qdiscs=select_all or args.qdiscs,
                classes=select_all or args.classes,
                links=select_all or args.links,
                device=args.device,
            )

        if not args.compact:
            print(json.dumps(snapshot, indent=2, sort_keys=False))
        else:
            print(json.dumps(snapshot, separators=(',', ':')))

        return 0

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except PermissionError:
        print("Error: permission denied opening the netlink socket", file=sys.stderr)
        return 1
    except TcError as e:
        print(f"Error: {e}", file=sys.stderr)
        if not args.lenient and isinstance(e, POLICY_ERRORS):
            print("Hint: rerun with --lenient to skip what tcsnap cannot decode", file=sys.stderr)
        logger.debug("snapshot failed", exc_info=True)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc(file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
