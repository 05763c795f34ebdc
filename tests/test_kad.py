import socket

import pytest

from kadnode.kad import (
    MAX_PACKET_SIZE,
    TrafficCounter,
    add_isolation_prefix,
    decode_values,
    dht_hash,
    format_peer,
    strip_isolation_prefix,
    to_address,
)

LOOPBACK4 = socket.inet_pton(socket.AF_INET, "127.0.0.1")
LOOPBACK6 = socket.inet_pton(socket.AF_INET6, "::1")
SECRET = bytes(range(1, 9))


def test_traffic_counter_totals_accumulate():
    counter = TrafficCounter(duration=4)
    counter.record(300, 0, 10)
    counter.record(0, 120, 11)
    counter.record(5, 7, 11)
    assert counter.in_total == 305
    assert counter.out_total == 127


def test_traffic_counter_rate_single_second_window():
    counter = TrafficCounter(duration=1)
    counter.record(500, 200, 5)
    assert counter.rates(5) == (500, 200)


def test_traffic_counter_window_expires():
    counter = TrafficCounter(duration=3)
    counter.record(900, 900, 20)
    assert counter.rates(20)[0] > 0
    assert counter.rates(30) == (0, 0)
    assert counter.in_total == 900


def test_traffic_counter_rate_bounded_by_total():
    counter = TrafficCounter(duration=5)
    for second in range(100, 110):
        counter.record(50, 10, second)
    rate_in, rate_out = counter.rates(109)
    assert rate_in * counter.duration <= counter.in_total
    assert rate_out * counter.duration <= counter.out_total


def test_traffic_counter_rejects_zero_duration():
    with pytest.raises(ValueError):
        TrafficCounter(duration=0)


def test_dht_hash_zero_address_and_port_keeps_secret():
    assert dht_hash(SECRET, bytes(4), 0) == SECRET
    assert dht_hash(SECRET, bytes(16), 0) == SECRET


def test_dht_hash_ipv6_equal_halves_cancel():
    half = bytes(range(40, 48))
    assert dht_hash(SECRET, half + half, 0) == SECRET


def test_dht_hash_is_involution_on_secret():
    token = dht_hash(SECRET, LOOPBACK4, 6881)
    assert len(token) == 8
    assert dht_hash(token, LOOPBACK4, 6881) == SECRET


def test_dht_hash_port_int_and_bytes_agree():
    assert dht_hash(SECRET, LOOPBACK6, 6881) == dht_hash(
        SECRET, LOOPBACK6, (6881).to_bytes(2, "big")
    )


@pytest.mark.parametrize(
    "secret, ip, port",
    [
        (bytes(7), bytes(4), 0),
        (bytes(8), bytes(5), 0),
        (bytes(8), bytes(4), b"\x00"),
        (bytes(8), bytes(4), 70000),
    ],
)
def test_dht_hash_rejects_bad_input(secret, ip, port):
    with pytest.raises(ValueError):
        dht_hash(secret, ip, port)


def test_to_address_families():
    addr4 = to_address(LOOPBACK4, 6881)
    addr6 = to_address(LOOPBACK6, 6881)
    assert (addr4.family, addr4.ip, addr4.port) == (socket.AF_INET, LOOPBACK4, 6881)
    assert (addr6.family, addr6.ip, addr6.port) == (socket.AF_INET6, LOOPBACK6, 6881)


def test_to_address_rejects_bad_length():
    with pytest.raises(ValueError):
        to_address(bytes(6), 80)


def test_decode_values_ipv4_records():
    data = LOOPBACK4 + (6881).to_bytes(2, "big") + bytes([10, 0, 0, 1]) + (80).to_bytes(2, "big")
    values = decode_values(data, socket.AF_INET)
    assert [(v.ip, v.port) for v in values] == [
        (LOOPBACK4, 6881),
        (bytes([10, 0, 0, 1]), 80),
    ]


def test_decode_values_ipv6_ignores_partial_record():
    data = LOOPBACK6 + (3535).to_bytes(2, "big") + b"\x01\x02\x03"
    values = decode_values(data, socket.AF_INET6)
    assert len(values) == 1
    assert values[0].ip == LOOPBACK6
    assert values[0].port == 3535


def test_decode_values_rejects_unknown_family():
    with pytest.raises(ValueError):
        decode_values(b"", socket.AF_UNSPEC)


def test_format_peer():
    assert format_peer(LOOPBACK4, 6881) == "127.0.0.1:6881"
    assert format_peer(LOOPBACK6, 6881) == "[::1]:6881"
    assert format_peer(bytes(3), 1) == "<invalid address>"


def test_isolation_prefix_round_trip():
    packet = b"d1:ad2:id20:abcdefghij0123456789e1:q4:pinge"
    prefixed = add_isolation_prefix(packet, b"net1")
    assert prefixed.startswith(b"net1")
    assert strip_isolation_prefix(prefixed, b"net1") == packet


def test_isolation_prefix_empty_is_identity():
    assert add_isolation_prefix(b"data", b"") == b"data"
    assert strip_isolation_prefix(b"data", b"") == b"data"


def test_strip_isolation_prefix_mismatch_and_short():
    assert strip_isolation_prefix(b"other-data", b"net1") is None
    assert strip_isolation_prefix(b"net1", b"net1") is None


def test_add_isolation_prefix_too_big():
    prefix = b"pfx"
    fits = bytes(MAX_PACKET_SIZE - len(prefix))
    assert len(add_isolation_prefix(fits, prefix)) == MAX_PACKET_SIZE
    with pytest.raises(ValueError):
        add_isolation_prefix(fits + b"x", prefix)