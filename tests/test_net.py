import itertools
import os
import socket

import pytest

from kadnode.net import (
    MAX_HANDLERS,
    READABLE,
    EventLoop,
    NetError,
    bind_socket,
    create_socket,
)


def test_bind_udp_socket():
    sock = bind_socket("KAD", "127.0.0.1", 0, None, socket.IPPROTO_UDP, socket.AF_UNSPEC)
    try:
        assert sock.getsockname()[0] == "127.0.0.1"
        assert sock.type == socket.SOCK_DGRAM
        assert sock.gettimeout() == 0.0
        assert sock.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR) != 0
    finally:
        sock.close()


def test_bind_tcp_socket_listens():
    server = bind_socket("CMD", "127.0.0.1", 0, None, socket.IPPROTO_TCP, socket.AF_UNSPEC)
    client = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        assert server.type == socket.SOCK_STREAM
        client.settimeout(2)
        client.connect(server.getsockname())
        assert client.getpeername() == server.getsockname()
    finally:
        client.close()
        server.close()


def test_bind_with_port_in_text_uses_given_port():
    sock = bind_socket("KAD", "127.0.0.1:0", 0)
    try:
        assert sock.getsockname()[0] == "127.0.0.1"
    finally:
        sock.close()


def test_bind_disabled_family():
    with pytest.raises(NetError):
        bind_socket("KAD", "127.0.0.1", 0, None, socket.IPPROTO_UDP, socket.AF_INET6)


def test_bind_bad_address():
    with pytest.raises(NetError):
        bind_socket("KAD", "[::1", 0)


def test_bind_bad_port():
    with pytest.raises(NetError):
        bind_socket("KAD", "127.0.0.1", 70000)


def test_create_socket_disabled_family():
    with pytest.raises(NetError):
        create_socket("KAD", None, socket.IPPROTO_UDP, socket.AF_INET6, socket.AF_INET)


def test_create_socket_nonblocking_tcp():
    sock = create_socket("KAD", None, socket.IPPROTO_TCP, socket.AF_INET, socket.AF_INET)
    try:
        assert sock.type == socket.SOCK_STREAM
        assert sock.gettimeout() == 0.0
    finally:
        sock.close()


def test_add_handler_none_callback():
    loop = EventLoop()
    with pytest.raises(ValueError):
        loop.add_handler(-1, None)


def test_add_handler_limit():
    loop = EventLoop()
    callbacks = [lambda revents, fd: None for _ in range(MAX_HANDLERS)]
    for callback in callbacks:
        loop.add_handler(-1, callback)
    assert len(loop.handlers) == MAX_HANDLERS
    with pytest.raises(NetError):
        loop.add_handler(-1, lambda revents, fd: None)


def test_remove_handler_errors():
    loop = EventLoop()

    def callback(revents, fd):
        pass

    loop.add_handler(-1, callback)
    with pytest.raises(NetError):
        loop.remove_handler(3, callback)
    with pytest.raises(ValueError):
        loop.remove_handler(-1, None)
    loop.remove_handler(-1, callback)
    assert loop.handlers == []


def test_run_periodic_calls():
    loop = EventLoop(poll_timeout=0.001)
    seen = []

    def callback(revents, fd):
        seen.append((revents, fd))
        if len(seen) == 3:
            loop.stop()

    loop.add_handler(-1, callback)
    loop.run(itertools.count(100).__next__)
    assert seen == [(-1, -1), (0, -1), (0, -1)]
    assert loop.running is False


def test_run_no_periodic_call_within_a_second():
    loop = EventLoop(poll_timeout=0.001)
    seen = []
    rounds = []

    def idle(revents, fd):
        seen.append(revents)

    def counter(revents, fd):
        rounds.append(revents)
        if len(rounds) == 3:
            loop.stop()

    loop.add_handler(-1, idle)
    loop.add_handler(-1, counter)
    ticks = iter([0, 0, 1, 2])
    loop.run(lambda: next(ticks))
    assert seen == [-1, 0, 0]
    assert rounds == [-1, 0, 0]
    assert loop.running is False
    assert loop.handlers == [(-1, idle), (-1, counter)]


def test_run_readable_descriptor():
    left, right = socket.socketpair()
    fd = left.detach()
    loop = EventLoop(poll_timeout=0.5)
    seen = []

    def callback(revents, handler_fd):
        seen.append(revents)
        if revents == READABLE:
            seen.append(os.read(handler_fd, 16))
            loop.stop()

    try:
        loop.add_handler(fd, callback)
        assert os.get_blocking(fd) is False
        right.send(b"x")
        loop.run(lambda: 5)
        assert seen == [-1, READABLE, b"x"]
    finally:
        loop.close()
        right.close()


def test_remove_during_run_reorders_handlers():
    loop = EventLoop(poll_timeout=0.001)

    def first(revents, fd):
        if revents == 0:
            loop.remove_handler(-1, first)

    def second(revents, fd):
        pass

    def third(revents, fd):
        if revents == 0:
            loop.stop()

    for callback in (first, second, third):
        loop.add_handler(-1, callback)
    loop.run(itertools.count(0).__next__)
    assert loop.handlers == [(-1, third), (-1, second)]


def test_close_closes_descriptors():
    left, right = socket.socketpair()
    fd = left.detach()
    loop = EventLoop()
    loop.add_handler(fd, lambda revents, handler_fd: None)
    loop.close()
    right.close()
    assert loop.handlers == []
    with pytest.raises(OSError):
        os.fstat(fd)