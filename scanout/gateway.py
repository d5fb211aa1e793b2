"""Discovery of the default gateway and interface addresses on Linux.

Routes and neighbour entries are read over an rtnetlink socket. Interface
addresses are read with ioctl calls on a datagram socket.
"""

from __future__ import annotations

import errno
import ipaddress
import logging
import os
import socket
import struct
from contextlib import closing
from typing import Iterator, Optional, Union

_log = logging.getLogger(__name__)

NETLINK_ROUTE = 0

RTM_NEWROUTE = 24
RTM_GETROUTE = 26
RTM_NEWNEIGH = 28
RTM_GETNEIGH = 30

NLMSG_ERROR = 2
NLMSG_DONE = 3

NLM_F_REQUEST = 0x1
NLM_F_MULTI = 0x2
NLM_F_DUMP = 0x300

RT_TABLE_MAIN = 254
RTA_OIF = 4
RTA_GATEWAY = 5

NDA_DST = 1
NDA_LLADDR = 2
NUD_REACHABLE = 0x02

IFHWADDRLEN = 6
IFNAMSIZ = 16

SIOCGIFFLAGS = 0x8913
SIOCGIFADDR = 0x8915
SIOCGIFHWADDR = 0x8927
IFF_UP = 0x1
IFF_LOOPBACK = 0x8

GW_BUFFER_SIZE = 64000
ROUTE_BUFFER_SIZE = 8192

_NLMSGHDR = struct.Struct("=IHHII")
_RTATTR = struct.Struct("=HH")
_RTMSG = struct.Struct("=BBBBBBBBI")
_NDMSG = struct.Struct("=BBHiHBB")
_ALIGN = 4

IPv4Like = Union[str, int, bytes, ipaddress.IPv4Address]


class GatewayError(Exception):
    """Raised when the gateway or an interface address cannot be found."""


def _align(length: int) -> int:
    return (length + _ALIGN - 1) & ~(_ALIGN - 1)


def build_netlink_request(
    msg_type: int, seq: int, payload: bytes, pid: Optional[int] = None
) -> bytes:
    """Return a dump request message carrying ``payload``."""
    payload = bytes(payload)
    header = _NLMSGHDR.pack(
        _NLMSGHDR.size + len(payload),
        msg_type,
        NLM_F_DUMP | NLM_F_REQUEST,
        seq,
        os.getpid() if pid is None else pid,
    )
    return header + payload


def _iter_messages(data: bytes) -> Iterator[tuple[int, int, bytes]]:
    """Yield (type, flags, body) for each well-formed netlink message."""
    offset = 0
    remaining = len(data)
    while remaining >= _NLMSGHDR.size:
        length, kind, flags, _seq, _pid = _NLMSGHDR.unpack_from(data, offset)
        if length < _NLMSGHDR.size or length > remaining:
            return
        yield kind, flags, data[offset + _NLMSGHDR.size : offset + length]
        step = _align(length)
        offset += step
        remaining -= step


def _iter_attrs(data: bytes) -> Iterator[tuple[int, bytes]]:
    """Yield (type, payload) for each well-formed routing attribute."""
    offset = 0
    remaining = len(data)
    while remaining >= _RTATTR.size:
        length, kind = _RTATTR.unpack_from(data, offset)
        if length < _RTATTR.size or length > remaining:
            return
        yield kind, data[offset + _RTATTR.size : offset + length]
        step = _align(length)
        offset += step
        remaining -= step


def _split_body(body: bytes) -> tuple[int, int, bytes]:
    if len(body) < _RTMSG.size:
        raise GatewayError("truncated routing message")
    family, _dst, _src, _tos, table, *_rest = _RTMSG.unpack_from(body)
    return family, table, body[_align(_RTMSG.size) :]


def parse_route_dump(data: bytes) -> tuple[ipaddress.IPv4Address, Optional[int]]:
    """Find the first route with a gateway in a route dump.

    Returns the gateway address and the index of the outgoing interface
    last seen, or None when no interface was named.
    """
    oif: Optional[int] = None
    for _kind, _flags, body in _iter_messages(bytes(data)):
        family, table, attrs = _split_body(body)
        if family != socket.AF_INET or table != RT_TABLE_MAIN:
            raise GatewayError("route dump holds a non-IPv4 or non-main-table route")
        gateway: Optional[ipaddress.IPv4Address] = None
        for attr_type, value in _iter_attrs(attrs):
            if attr_type == RTA_OIF and len(value) >= 4:
                (oif,) = struct.unpack_from("=i", value)
            elif attr_type == RTA_GATEWAY and len(value) >= 4:
                gateway = ipaddress.IPv4Address(value[:4])
        if gateway is not None:
            return gateway, oif
    raise GatewayError("no default gateway found in route dump")


def parse_neighbor_dump(data: bytes, gw_ip: IPv4Like) -> bytes:
    """Return the hardware address of ``gw_ip`` from a neighbour dump."""
    wanted = ipaddress.IPv4Address(gw_ip).packed
    for _kind, _flags, body in _iter_messages(bytes(data)):
        family, _table, attrs = _split_body(body)
        if family != socket.AF_INET:
            raise GatewayError("neighbour dump holds a non-IPv4 entry")
        mac: Optional[bytes] = None
        correct_ip = False
        for attr_type, value in _iter_attrs(attrs):
            if attr_type == NDA_LLADDR:
                if len(value) != IFHWADDRLEN:
                    raise GatewayError(
                        f"Unexpected hardware address length ({len(value)})."
                        " If you are using a VPN, supply the --iplayer flag (and provide an"
                        " interface via -i)"
                    )
                mac = value
            elif attr_type == NDA_DST:
                if len(value) != 4:
                    raise GatewayError(
                        f"Unexpected IP address length ({len(value)})."
                        " If you are using a VPN, supply the --iplayer flag"
                        " (and provide an interface via -i)"
                    )
                correct_ip = value == wanted
        if correct_ip and mac is not None:
            return bytes(mac)
    raise GatewayError(f"no hardware address found for {ipaddress.IPv4Address(gw_ip)}")


def _netlink_socket() -> socket.socket:
    family = getattr(socket, "AF_NETLINK", None)
    if family is None:
        raise GatewayError("netlink sockets are not available on this system")
    try:
        return socket.socket(family, socket.SOCK_DGRAM, NETLINK_ROUTE)
    except OSError as exc:
        raise GatewayError(f"unable to get socket: {exc.strerror}") from exc


def _netlink_dump(msg_type: int, seq: int, payload: bytes, bufsize: int) -> bytes:
    """Send a dump request and collect the reply messages."""
    with closing(_netlink_socket()) as sock:
        try:
            sock.send(build_netlink_request(msg_type, seq, payload))
        except OSError as exc:
            raise GatewayError(f"failure sending: {exc.strerror}") from exc
        collected = bytearray()
        while True:
            try:
                chunk = sock.recv(bufsize - len(collected))
            except OSError as exc:
                raise GatewayError(f"recv failed: {exc.strerror}") from exc
            if not chunk or len(chunk) < _NLMSGHDR.size:
                raise GatewayError("recv failed")
            length, kind, flags, _seq, _pid = _NLMSGHDR.unpack_from(chunk)
            if length < _NLMSGHDR.size or length > len(chunk) or kind == NLMSG_ERROR:
                raise GatewayError("recv failed")
            if kind == NLMSG_DONE:
                break
            collected += chunk
            if not flags & NLM_F_MULTI:
                break
    if not collected:
        raise GatewayError("empty netlink reply")
    return bytes(collected)


def get_default_gw(iface: str) -> ipaddress.IPv4Address:
    """Return the default gateway, which must be reached through ``iface``."""
    data = _netlink_dump(RTM_GETROUTE, 0, bytes(_RTMSG.size), ROUTE_BUFFER_SIZE)
    try:
        gateway, oif = parse_route_dump(data)
    except GatewayError:
        gateway, oif = None, None
    gw_iface = ""
    if oif is not None:
        try:
            gw_iface = socket.if_indextoname(oif)
        except OSError:
            gw_iface = ""
    if gateway is None or gw_iface != iface:
        raise GatewayError(
            f"interface specified ({iface}) does not match the interface of the "
            f"default gateway ({gw_iface}). You will need to manually specify the "
            "MAC address of your gateway."
        )
    return gateway


def get_hw_addr(gw_ip: Optional[IPv4Like], iface: str) -> bytes:
    """Return the hardware address of ``gw_ip`` as seen on ``iface``."""
    if gw_ip is None:
        raise GatewayError("no gateway address given")
    try:
        ifindex = socket.if_nametoindex(iface)
    except OSError as exc:
        raise GatewayError(f"unknown interface ({iface})") from exc
    request = _NDMSG.pack(socket.AF_INET, 0, 0, ifindex, NUD_REACHABLE, 0, NDA_LLADDR)
    data = _netlink_dump(RTM_GETNEIGH, 1, request, GW_BUFFER_SIZE)
    return parse_neighbor_dump(data, gw_ip)


def _ifreq(iface: str) -> bytes:
    name = iface.encode()
    if len(name) >= IFNAMSIZ:
        raise GatewayError(f"device interface name ({iface}) too long")
    return struct.pack("256s", name)


def _interface_ioctl(iface: str, request: int) -> bytes:
    buffer = _ifreq(iface)
    try:
        import fcntl
    except ImportError as exc:
        raise GatewayError("interface queries are not available on this system") from exc
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as exc:
        raise GatewayError(f"failure opening socket: {exc.strerror}") from exc
    with closing(sock):
        try:
            return fcntl.ioctl(sock.fileno(), request, buffer)
        except OSError as exc:
            raise GatewayError(f"ioctl failure: {exc.strerror}") from exc


def get_iface_ip(iface: str) -> ipaddress.IPv4Address:
    """Return the IPv4 address assigned to ``iface``."""
    result = _interface_ioctl(iface, SIOCGIFADDR)
    return ipaddress.IPv4Address(result[20:24])


def get_iface_hw_addr(iface: str) -> bytes:
    """Return the hardware address of ``iface``."""
    result = _interface_ioctl(iface, SIOCGIFHWADDR)
    return bytes(result[18:24])


def get_default_iface() -> str:
    """Return the first interface that is up and is not a loopback."""
    try:
        interfaces = socket.if_nameindex()
    except OSError as exc:
        raise GatewayError(str(exc)) from exc
    for _index, name in interfaces:
        try:
            result = _interface_ioctl(name, SIOCGIFFLAGS)
        except GatewayError:
            continue
        (flags,) = struct.unpack_from("=H", result, IFNAMSIZ)
        if flags & IFF_UP and not flags & IFF_LOOPBACK:
            return name
    raise GatewayError(
        "could not detect default network interface (e.g. eth0). Try running as "
        "root or setting interface using -i flag."
    )