"""
Kernel constants for the RTNetlink traffic control dialog.

Values come from the uapi headers:
    linux/netlink.h, linux/rtnetlink.h, linux/if_link.h,
    linux/pkt_sched.h, linux/gen_stats.h
"""

# Netlink control message types (linux/netlink.h)
NLMSG_NOOP = 0x1
NLMSG_ERROR = 0x2
NLMSG_DONE = 0x3
NLMSG_OVERRUN = 0x4

NLMSG_ALIGNTO = 4
NLMSG_HDRLEN = 16

# Netlink header flags
NLM_F_REQUEST = 0x01
NLM_F_MULTI = 0x02
NLM_F_ROOT = 0x100
NLM_F_MATCH = 0x200
NLM_F_DUMP = NLM_F_ROOT | NLM_F_MATCH

# Attribute type flags
NLA_F_NESTED = 1 << 15
NLA_F_NET_BYTEORDER = 1 << 14
NLA_TYPE_MASK = ~(NLA_F_NESTED | NLA_F_NET_BYTEORDER) & 0xFFFF
NLA_HDRLEN = 4
NLA_ALIGNTO = 4

# RTNetlink message types (linux/rtnetlink.h)
RTM_NEWLINK = 16
RTM_GETLINK = 18
RTM_NEWQDISC = 36
RTM_GETQDISC = 38
RTM_NEWTCLASS = 40
RTM_GETTCLASS = 42

# Answer expected for each dump request
DUMP_REPLY_TYPES = {
    RTM_GETQDISC: RTM_NEWQDISC,
    RTM_GETTCLASS: RTM_NEWTCLASS,
    RTM_GETLINK: RTM_NEWLINK,
}

# TCA_* top-level attributes (linux/rtnetlink.h)
TCA_UNSPEC = 0
TCA_KIND = 1
TCA_OPTIONS = 2
TCA_STATS = 3
TCA_XSTATS = 4
TCA_RATE = 5
TCA_FCNT = 6
TCA_STATS2 = 7
TCA_STAB = 8
TCA_PAD = 9
TCA_DUMP_INVISIBLE = 10
TCA_CHAIN = 11
TCA_HW_OFFLOAD = 12
TCA_INGRESS_BLOCK = 13
TCA_EGRESS_BLOCK = 14
TCA_DUMP_FLAGS = 15
TCA_EXT_WARN_MSG = 16

TCA_ATTR_NAMES = {
    TCA_UNSPEC: 'TCA_UNSPEC',
    TCA_KIND: 'TCA_KIND',
    TCA_OPTIONS: 'TCA_OPTIONS',
    TCA_STATS: 'TCA_STATS',
    TCA_XSTATS: 'TCA_XSTATS',
    TCA_RATE: 'TCA_RATE',
    TCA_FCNT: 'TCA_FCNT',
    TCA_STATS2: 'TCA_STATS2',
    TCA_STAB: 'TCA_STAB',
    TCA_PAD: 'TCA_PAD',
    TCA_DUMP_INVISIBLE: 'TCA_DUMP_INVISIBLE',
    TCA_CHAIN: 'TCA_CHAIN',
    TCA_HW_OFFLOAD: 'TCA_HW_OFFLOAD',
    TCA_INGRESS_BLOCK: 'TCA_INGRESS_BLOCK',
    TCA_EGRESS_BLOCK: 'TCA_EGRESS_BLOCK',
    TCA_DUMP_FLAGS: 'TCA_DUMP_FLAGS',
    TCA_EXT_WARN_MSG: 'TCA_EXT_WARN_MSG',
}

# TCA_STATS2 nested attributes (linux/gen_stats.h)
TCA_STATS_UNSPEC = 0
TCA_STATS_BASIC = 1
TCA_STATS_RATE_EST = 2
TCA_STATS_QUEUE = 3
TCA_STATS_APP = 4
TCA_STATS_RATE_EST64 = 5
TCA_STATS_PAD = 6
TCA_STATS_BASIC_HW = 7
TCA_STATS_PKT64 = 8

# HTB options (linux/pkt_sched.h)
TCA_HTB_UNSPEC = 0
TCA_HTB_PARMS = 1
TCA_HTB_INIT = 2
TCA_HTB_CTAB = 3
TCA_HTB_RTAB = 4
TCA_HTB_DIRECT_QLEN = 5
TCA_HTB_RATE64 = 6
TCA_HTB_CEIL64 = 7
TCA_HTB_PAD = 8
TCA_HTB_OFFLOAD = 9

# FQ_CODEL options (linux/pkt_sched.h)
TCA_FQ_CODEL_TARGET = 1
TCA_FQ_CODEL_LIMIT = 2
TCA_FQ_CODEL_INTERVAL = 3
TCA_FQ_CODEL_ECN = 4
TCA_FQ_CODEL_FLOWS = 5
TCA_FQ_CODEL_QUANTUM = 6
TCA_FQ_CODEL_CE_THRESHOLD = 7
TCA_FQ_CODEL_DROP_BATCH_SIZE = 8
TCA_FQ_CODEL_MEMORY_LIMIT = 9

TCA_FQ_CODEL_XSTATS_QDISC = 0

# Link attributes (linux/if_link.h)
IFLA_IFNAME = 3

# Parent handle of a root qdisc
TC_H_ROOT = 0xFFFFFFFF

# Qdisc/class kinds with a registered codec
HTB = 'htb'
FQ_CODEL = 'fq_codel'
CLSACT = 'clsact'
