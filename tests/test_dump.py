#!/usr/bin/env python3
"""
Request encoding, attribute framing, dump reassembly and the query entry
points, driven through a fake kernel connection.
"""

from errno import ENOBUFS, EOPNOTSUPP, EPERM
import struct
from unittest.mock import patch

import pytest

from tcsnap.codecs import check_abi, python_struct_sizes
from tcsnap.constants import (
    NLM_F_DUMP, NLM_F_REQUEST, NLMSG_NOOP, NLMSG_OVERRUN, RTM_GETLINK,
    RTM_GETQDISC, RTM_GETTCLASS, RTM_NEWLINK, RTM_NEWQDISC, TC_H_ROOT,
    TCA_HTB_PARMS, TCA_KIND, TCA_OPTIONS,
)
from tcsnap.dump import receive_dump
from tcsnap.errors import (
    FramingError, KernelError, LinkNotFoundError, TransportError,
    UnknownKindError, UnknownMessageTypeError,
)
from tcsnap.netlink import (
    NLMSG_HEADER, NetlinkSocket, encode_request, kernel_struct_sizes,
    parse_header, split_attributes,
)
from tcsnap.policy import Policy
from tcsnap.query import (
    TrafficControlQuery, classes_for_index, classes_for_name, list_classes,
    list_links, list_qdiscs, tc_stats,
)
from tcsnap.types import TcRecord

from netlink_fixtures import (
    ETH0_LINK, FQ_CODEL_QDISC, HTB_CLASS, HTB_QDISC, LO_LINK, MQ_QDISC,
    NOQUEUE_QDISC, DatagramConnection, FakeConnection, cstring, done,
    dump_datagrams, error, htb_opt, ifinfomsg, kernel_responder, nested, nla,
    nlmsg, tcmsg, u32,
)

SEQ = 77
LENIENT = Policy.lenient()


def qdisc_request():
    return encode_request(RTM_GETQDISC, sequence=SEQ)


def request_index(request):
    return struct.unpack_from('=I', request, 20)[0]


# ============================================================================
# Request encoding and framing
# ============================================================================

class TestEncodeRequest:
    """Dump request serialization"""

    def test_qdisc_request(self):
        request = encode_request(RTM_GETQDISC, sequence=5)
        length, msg_type, flags, sequence, pid = parse_header(request)
        assert length == len(request) == 36
        assert msg_type == RTM_GETQDISC
        assert flags == NLM_F_REQUEST | NLM_F_DUMP
        assert sequence == 5
        assert pid == 0

    def test_class_request_carries_index(self):
        request = encode_request(RTM_GETTCLASS, sequence=5, index=3)
        assert request_index(request) == 3

    def test_link_request(self):
        request = encode_request(RTM_GETLINK, sequence=5)
        assert parse_header(request)[0] == len(request) == 32

    def test_sequence_numbers_increase(self):
        first = parse_header(encode_request(RTM_GETQDISC))[3]
        second = parse_header(encode_request(RTM_GETQDISC))[3]
        assert second > first

    def test_unsupported_type(self):
        with pytest.raises(ValueError):
            encode_request(RTM_NEWQDISC)

    def test_truncated_header(self):
        with pytest.raises(FramingError):
            parse_header(b'\0' * 10)


class TestSplitAttributes:
    """One level of TLV framing"""

    def test_split(self):
        data = nla(1, cstring('htb')) + nla(2, u32(7))
        assert split_attributes(data) == [(1, b'htb\0'), (2, u32(7))]

    def test_nested_flag_masked(self):
        data = nested(TCA_OPTIONS, nla(1, u32(1)))
        [(kind, payload)] = split_attributes(data)
        assert kind == TCA_OPTIONS
        assert split_attributes(payload) == [(1, u32(1))]

    def test_offset(self):
        data = b'\0' * 20 + nla(TCA_KIND, cstring('mq'))
        assert split_attributes(data, 20) == [(TCA_KIND, b'mq\0')]

    def test_trailing_padding_ignored(self):
        assert split_attributes(nla(1, b'') + b'\0\0') == [(1, b'')]

    def test_length_shorter_than_header(self):
        with pytest.raises(FramingError):
            split_attributes(struct.pack('=HH', 2, 1))

    def test_overrun(self):
        with pytest.raises(FramingError):
            split_attributes(struct.pack('=HH', 40, 1) + b'\0' * 8)


# ============================================================================
# Dump reassembly
# ============================================================================

class TestReceiveDump:
    """Draining a dump from the connection"""

    def test_single_datagram(self):
        datagrams = dump_datagrams(RTM_NEWQDISC, [NOQUEUE_QDISC, MQ_QDISC], SEQ)
        conn = FakeConnection(datagrams)
        messages = receive_dump(conn, qdisc_request())
        assert [m.payload for m in messages] == [NOQUEUE_QDISC, MQ_QDISC]
        assert all(m.msg_type == RTM_NEWQDISC and m.sequence == SEQ for m in messages)
        assert conn.requests == [qdisc_request()]

    def test_one_message_per_datagram(self):
        payloads = [NOQUEUE_QDISC, MQ_QDISC, FQ_CODEL_QDISC, HTB_QDISC]
        conn = FakeConnection(dump_datagrams(RTM_NEWQDISC, payloads, SEQ, per_datagram=1))
        messages = receive_dump(conn, qdisc_request())
        assert [m.payload for m in messages] == payloads
        assert conn.reads == 5

    def test_messages_split_across_reads(self):
        [datagram] = dump_datagrams(RTM_NEWQDISC, [FQ_CODEL_QDISC, MQ_QDISC], SEQ)
        chunks = [datagram[i:i + 7] for i in range(0, len(datagram), 7)]
        messages = receive_dump(FakeConnection(chunks), qdisc_request())
        assert [m.payload for m in messages] == [FQ_CODEL_QDISC, MQ_QDISC]

    def test_message_larger_than_buffer(self):
        big = tcmsg(3, 0x10001, TC_H_ROOT, nla(TCA_KIND, cstring('htb')),
                    nested(TCA_OPTIONS, nla(TCA_HTB_PARMS, htb_opt()), nla(3, b'\7' * 6000)))
        conn = FakeConnection(dump_datagrams(RTM_NEWQDISC, [big, MQ_QDISC], SEQ))
        messages = receive_dump(conn, qdisc_request(), buffer_size=4096)
        assert [m.payload for m in messages] == [big, MQ_QDISC]
        assert conn.reads >= 2

    def test_datagram_larger_than_buffer(self):
        """An oversized datagram is read again with a grown buffer"""
        big = tcmsg(3, 0x10001, TC_H_ROOT, nla(TCA_KIND, cstring('htb')),
                    nested(TCA_OPTIONS, nla(TCA_HTB_PARMS, htb_opt()), nla(3, b'\7' * 4096)))
        big_datagram = nlmsg(RTM_NEWQDISC, big, SEQ)
        tail = nlmsg(RTM_NEWQDISC, MQ_QDISC, SEQ) + done(SEQ)
        conn = DatagramConnection([big_datagram, tail])

        messages = receive_dump(conn, qdisc_request(), buffer_size=4096)
        assert [m.payload for m in messages] == [big, MQ_QDISC]
        assert conn.reads == 3

    def test_truncated_datagram_detected(self):
        big_datagram = nlmsg(RTM_NEWQDISC, NOQUEUE_QDISC + nla(99, b'\0' * 4096), SEQ)
        tail = nlmsg(RTM_NEWQDISC, MQ_QDISC, SEQ) + done(SEQ)
        conn = DatagramConnection([big_datagram, tail], peek=False)

        with pytest.raises(FramingError):
            receive_dump(conn, qdisc_request(), buffer_size=4096)

    def test_oversized_datagram_limit(self):
        class Huge(DatagramConnection):
            def recv_into(self, buffer):
                return 1 << 30

        with pytest.raises(FramingError):
            receive_dump(Huge(), qdisc_request())

    def test_other_sequence_skipped(self):
        stale = nlmsg(RTM_NEWQDISC, NOQUEUE_QDISC, SEQ - 1)
        [datagram] = dump_datagrams(RTM_NEWQDISC, [MQ_QDISC], SEQ)
        messages = receive_dump(FakeConnection([stale + datagram]), qdisc_request())
        assert [m.payload for m in messages] == [MQ_QDISC]

    def test_ack_and_noop_skipped(self):
        extra = error(SEQ, 0) + nlmsg(NLMSG_NOOP, b'', SEQ)
        [datagram] = dump_datagrams(RTM_NEWQDISC, [MQ_QDISC], SEQ)
        messages = receive_dump(FakeConnection([extra + datagram]), qdisc_request())
        assert len(messages) == 1

    def test_kernel_error(self):
        datagram = nlmsg(RTM_NEWQDISC, MQ_QDISC, SEQ) + error(SEQ, EPERM)
        with pytest.raises(KernelError) as exc:
            receive_dump(FakeConnection([datagram]), qdisc_request())
        assert exc.value.errno == EPERM

    def test_done_with_error(self):
        datagram = nlmsg(RTM_NEWQDISC, MQ_QDISC, SEQ) + done(SEQ, -EOPNOTSUPP)
        with pytest.raises(KernelError) as exc:
            receive_dump(FakeConnection([datagram]), qdisc_request())
        assert exc.value.errno == EOPNOTSUPP

    def test_overrun(self):
        with pytest.raises(KernelError) as exc:
            receive_dump(FakeConnection([nlmsg(NLMSG_OVERRUN, b'', SEQ)]), qdisc_request())
        assert exc.value.errno == ENOBUFS

    def test_zero_length_drops_rest_of_datagram(self):
        first = nlmsg(RTM_NEWQDISC, MQ_QDISC, SEQ) + b'\0' * 16 + b'\xff' * 40
        conn = FakeConnection([first, done(SEQ)])
        messages = receive_dump(conn, qdisc_request())
        assert [m.payload for m in messages] == [MQ_QDISC]
        assert conn.reads == 2

    def test_length_shorter_than_header(self):
        bad = NLMSG_HEADER.pack(8, RTM_NEWQDISC, 0, SEQ, 0) + b'\0' * 8
        with pytest.raises(FramingError):
            receive_dump(FakeConnection([bad]), qdisc_request())

    def test_absurd_length(self):
        bad = NLMSG_HEADER.pack(1 << 25, RTM_NEWQDISC, 0, SEQ, 0)
        with pytest.raises(FramingError):
            receive_dump(FakeConnection([bad]), qdisc_request())

    def test_connection_closed_before_done(self):
        conn = FakeConnection([nlmsg(RTM_NEWQDISC, MQ_QDISC, SEQ)])
        with pytest.raises(TransportError):
            receive_dump(conn, qdisc_request())

    def test_unexpected_message_type(self):
        [datagram] = dump_datagrams(RTM_NEWQDISC, [MQ_QDISC], SEQ)
        stray = nlmsg(RTM_NEWLINK, LO_LINK, SEQ)
        with pytest.raises(UnknownMessageTypeError) as exc:
            receive_dump(FakeConnection([stray + datagram]), qdisc_request())
        assert exc.value.message_type == RTM_NEWLINK

        messages = receive_dump(FakeConnection([stray + datagram]), qdisc_request(), LENIENT)
        assert [m.payload for m in messages] == [MQ_QDISC]


# ============================================================================
# Query entry points
# ============================================================================

ETH0_AT_1 = ifinfomsg(1, 'eth0')
ETH0_AT_1_CLASS = tcmsg(
    1, 65537, TC_H_ROOT,
    nla(TCA_KIND, cstring('htb')),
    nested(TCA_OPTIONS, nla(TCA_HTB_PARMS, htb_opt())),
)


def fake_kernel(**kwargs):
    return FakeConnection(responder=kernel_responder(**kwargs))


class TestQueries:
    """Public entry points over an injected connection"""

    def test_list_qdiscs(self):
        conn = fake_kernel(qdiscs=[NOQUEUE_QDISC, MQ_QDISC, FQ_CODEL_QDISC, HTB_QDISC])
        records = list_qdiscs(connection=conn)
        assert [r.kind for r in records] == ['noqueue', 'mq', 'fq_codel', 'htb']
        assert records[1].stats.bytes == 122851868
        assert records[1].stats.packets == 407415
        assert records[1].stats2.queue.overlimits == 13
        assert not conn.closed

    def test_classes_for_name(self):
        conn = fake_kernel(links=[ETH0_AT_1], classes={1: [ETH0_AT_1_CLASS]})
        records = classes_for_name('eth0', connection=conn)
        assert len(records) == 1
        assert records[0].handle == 65537
        assert records[0].tclass.parms.quantum == 12500
        assert request_index(conn.requests[-1]) == 1

    def test_classes_for_unknown_name(self):
        conn = fake_kernel(links=[LO_LINK])
        with pytest.raises(LinkNotFoundError):
            classes_for_name('eth0', connection=conn)

    def test_classes_for_index(self):
        conn = fake_kernel(classes={3: [HTB_CLASS]})
        assert len(classes_for_index(3, connection=conn)) == 1
        assert classes_for_index(1, connection=conn) == []

    def test_list_classes_walks_every_link(self):
        conn = fake_kernel(links=[LO_LINK, ETH0_LINK], classes={3: [HTB_CLASS]})
        records = list_classes(connection=conn)
        assert [r.handle for r in records] == [65537]
        assert [parse_header(r)[1] for r in conn.requests] == [RTM_GETLINK, RTM_GETTCLASS, RTM_GETTCLASS]
        assert [request_index(r) for r in conn.requests[1:]] == [1, 3]

    def test_list_links(self):
        conn = fake_kernel(links=[LO_LINK, ETH0_LINK], per_datagram=1)
        assert [link.name for link in list_links(connection=conn)] == ['lo', 'eth0']

    def test_tc_stats(self):
        conn = fake_kernel(qdiscs=[HTB_QDISC], links=[ETH0_LINK], classes={3: [HTB_CLASS]})
        records = tc_stats(connection=conn)
        assert [(r.kind, r.is_class) for r in records] == [('htb', False), ('htb', True)]

    def test_strict_by_default(self):
        unknown = tcmsg(1, 0, TC_H_ROOT, nla(TCA_KIND, cstring('sfq')), nested(TCA_OPTIONS, nla(1, u32(1))))
        with pytest.raises(UnknownKindError):
            list_qdiscs(connection=fake_kernel(qdiscs=[unknown]))
        [record] = list_qdiscs(LENIENT, fake_kernel(qdiscs=[unknown]))
        assert record.kind == 'sfq'
        assert record.qdisc is None


class FakeSocket(FakeConnection):
    """NetlinkSocket replacement answering from canned replies"""

    instances = []

    def __init__(self):
        super().__init__(responder=kernel_responder(
            qdiscs=[NOQUEUE_QDISC], links=[ETH0_LINK], classes={3: [HTB_CLASS]}))
        self.opened = False
        FakeSocket.instances.append(self)

    def open(self):
        self.opened = True


@pytest.fixture
def fake_socket():
    FakeSocket.instances = []
    with patch('tcsnap.query.NetlinkSocket', FakeSocket), \
            patch('tcsnap.query.kernel_struct_sizes', python_struct_sizes):
        yield FakeSocket


class TestTrafficControlQuery:
    """Socket lifetime of TrafficControlQuery"""

    def test_auto_open_and_close_per_call(self, fake_socket):
        query = TrafficControlQuery()
        assert len(query.get_qdiscs()) == 1
        assert len(query.get_classes()) == 1
        assert not query.is_open
        assert len(fake_socket.instances) == 2
        assert all(s.opened and s.closed for s in fake_socket.instances)

    def test_context_manager_reuses_socket(self, fake_socket):
        with TrafficControlQuery() as query:
            query.get_qdiscs()
            query.get_classes_for_name('eth0')
            assert query.is_open
        assert len(fake_socket.instances) == 1
        assert fake_socket.instances[0].closed

    def test_injected_connection_left_open(self):
        conn = fake_kernel(qdiscs=[MQ_QDISC])
        with TrafficControlQuery(connection=conn) as query:
            query.get_qdiscs()
        assert not conn.closed

    def test_socket_closed_when_abi_check_fails(self, fake_socket):
        with patch('tcsnap.query._abi_checked', False), \
                patch('tcsnap.query.kernel_struct_sizes', side_effect=RuntimeError("no compiler")):
            with pytest.raises(RuntimeError):
                TrafficControlQuery().get_qdiscs()
        [sock] = fake_socket.instances
        assert sock.opened and sock.closed

    def test_policy_default(self):
        assert TrafficControlQuery().policy == Policy()
        assert TrafficControlQuery(LENIENT).policy is LENIENT


# ============================================================================
# Live kernel (skipped without a compiler or netlink access)
# ============================================================================

@pytest.fixture
def live_socket():
    sock = NetlinkSocket()
    try:
        sock.open()
    except Exception as e:
        pytest.skip(f"netlink socket unavailable: {e}")
    yield sock
    sock.close()


class TestLiveKernel:
    """Round trips against the running kernel"""

    def test_links_include_loopback(self, live_socket):
        names = [link.name for link in list_links(connection=live_socket)]
        assert 'lo' in names

    def test_qdiscs_decode(self, live_socket):
        records = list_qdiscs(LENIENT, live_socket)
        assert all(isinstance(r, TcRecord) and not r.is_class for r in records)

    def test_kernel_struct_sizes(self, live_socket):
        assert check_abi(kernel_struct_sizes()) == {}
