import ipaddress
import socket
import struct

import pytest

from scanout.gateway import (
    NDA_DST,
    NDA_LLADDR,
    NLM_F_DUMP,
    NLM_F_REQUEST,
    RT_TABLE_MAIN,
    RTA_GATEWAY,
    RTA_OIF,
    RTM_GETROUTE,
    RTM_NEWNEIGH,
    RTM_NEWROUTE,
    GatewayError,
    build_netlink_request,
    get_hw_addr,
    get_iface_hw_addr,
    get_iface_ip,
    parse_neighbor_dump,
    parse_route_dump,
)

MAC = bytes([0x02, 0x00, 0x00, 0x00, 0x00, 0x01])
GW = "192.0.2.1"


def _attr(kind, value):
    length = 4 + len(value)
    pad = (-length) % 4
    return struct.pack("=HH", length, kind) + value + b"\x00" * pad


def _message(kind, body, flags=0):
    return struct.pack("=IHHII", 16 + len(body), kind, flags, 0, 0) + body


def _route(table=RT_TABLE_MAIN, family=socket.AF_INET, attrs=b""):
    rtmsg = struct.pack("=BBBBBBBBI", family, 0, 0, 0, table, 0, 0, 0, 0)
    return _message(RTM_NEWROUTE, rtmsg + attrs)


def _neigh(attrs, family=socket.AF_INET):
    ndmsg = struct.pack("=BBHiHBB", family, 0, 0, 1, 2, 0, 0)
    return _message(RTM_NEWNEIGH, ndmsg + attrs)


def test_request_header_fields():
    payload = b"\x01\x02\x03"
    data = build_netlink_request(RTM_GETROUTE, 7, payload, pid=42)
    length, kind, flags, seq, pid = struct.unpack_from("=IHHII", data)
    assert length == 16 + len(payload)
    assert len(data) == length
    assert kind == RTM_GETROUTE
    assert flags == NLM_F_DUMP | NLM_F_REQUEST
    assert (seq, pid) == (7, 42)
    assert data[16:] == payload


def test_route_with_gateway_and_oif():
    attrs = _attr(RTA_OIF, struct.pack("=i", 3)) + _attr(
        RTA_GATEWAY, ipaddress.IPv4Address(GW).packed
    )
    gateway, oif = parse_route_dump(_route(attrs=attrs))
    assert gateway == ipaddress.IPv4Address(GW)
    assert oif == 3


def test_route_without_gateway_is_skipped():
    first = _route(attrs=_attr(RTA_OIF, struct.pack("=i", 5)))
    second = _route(attrs=_attr(RTA_GATEWAY, ipaddress.IPv4Address(GW).packed))
    gateway, oif = parse_route_dump(first + second)
    assert gateway == ipaddress.IPv4Address(GW)
    assert oif == 5


def test_route_round_trip_through_request_builder():
    rtmsg = struct.pack("=BBBBBBBBI", socket.AF_INET, 0, 0, 0, RT_TABLE_MAIN, 0, 0, 0, 0)
    attrs = _attr(RTA_GATEWAY, ipaddress.IPv4Address(GW).packed)
    data = build_netlink_request(RTM_NEWROUTE, 0, rtmsg + attrs, pid=1)
    gateway, oif = parse_route_dump(data)
    assert gateway == ipaddress.IPv4Address(GW)
    assert oif is None


@pytest.mark.parametrize(
    "data",
    [
        b"",
        _route(table=RT_TABLE_MAIN + 1),
        _route(family=socket.AF_INET6),
        _route(attrs=_attr(RTA_OIF, struct.pack("=i", 2))),
    ],
)
def test_route_dump_errors(data):
    with pytest.raises(GatewayError):
        parse_route_dump(data)


def test_neighbor_found():
    attrs = _attr(NDA_DST, ipaddress.IPv4Address(GW).packed) + _attr(NDA_LLADDR, MAC)
    assert parse_neighbor_dump(_neigh(attrs), GW) == MAC


def test_neighbor_found_in_second_entry():
    other = _attr(NDA_DST, ipaddress.IPv4Address("192.0.2.9").packed) + _attr(
        NDA_LLADDR, bytes(6)
    )
    match = _attr(NDA_LLADDR, MAC) + _attr(NDA_DST, ipaddress.IPv4Address(GW).packed)
    assert parse_neighbor_dump(_neigh(other) + _neigh(match), ipaddress.IPv4Address(GW)) == MAC


def test_neighbor_not_found():
    attrs = _attr(NDA_DST, ipaddress.IPv4Address("192.0.2.9").packed) + _attr(NDA_LLADDR, MAC)
    with pytest.raises(GatewayError):
        parse_neighbor_dump(_neigh(attrs), GW)


@pytest.mark.parametrize(
    "attrs",
    [
        _attr(NDA_LLADDR, MAC[:4]),
        _attr(NDA_DST, b"\x01\x02\x03\x04\x05\x06\x07\x08"),
    ],
)
def test_neighbor_bad_lengths(attrs):
    with pytest.raises(GatewayError):
        parse_neighbor_dump(_neigh(attrs), GW)


def test_neighbor_non_ipv4_family():
    attrs = _attr(NDA_LLADDR, MAC)
    with pytest.raises(GatewayError):
        parse_neighbor_dump(_neigh(attrs, family=socket.AF_INET6), GW)


def test_hw_addr_requires_gateway():
    with pytest.raises(GatewayError):
        get_hw_addr(None, "lo")


@pytest.mark.parametrize("query", [get_iface_ip, get_iface_hw_addr])
def test_interface_name_too_long(query):
    with pytest.raises(GatewayError):
        query("x" * 40)