# tests/test_transport.py
import errno
import socket
import struct
import threading
import time

import pytest

from echoPing import icmp
from echoPing import transport as transport_module
from echoPing.transport import (Transport, AddressResolutionFailed, SocketCreationFailed,
                                PermissionDenied, SendFailed)


class StubSocket:
    """Socket double: scripted recv results, recorded sendto calls."""
    type = socket.SOCK_RAW

    def __init__(self, recv_script=(), send_result=None, send_error=None):
        self.recv_script = list(recv_script)
        self.send_result = send_result
        self.send_error = send_error
        self.sent = []
        self.closed = False

    def recv(self, size):
        if self.closed:
            raise OSError(errno.EBADF, "Bad file descriptor")
        if not self.recv_script:
            time.sleep(0.005)
            raise socket.timeout()
        item = self.recv_script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def sendto(self, data, address):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((data, address))
        return len(data) if self.send_result is None else self.send_result

    def close(self):
        self.closed = True


def test_resolve_ipv4_literal():
    family, address = Transport.resolve("127.0.0.1")
    assert family == socket.AF_INET
    assert address[0] == "127.0.0.1"


def test_resolve_ipv6_literal():
    family, address = Transport.resolve("::1")
    assert family == socket.AF_INET6
    assert address[0] == "::1"


def test_resolve_failure(monkeypatch):
    def fail(*args, **kwargs):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
    monkeypatch.setattr(transport_module.socket, "getaddrinfo", fail)
    with pytest.raises(AddressResolutionFailed):
        Transport.resolve("no-such-host.invalid")


def test_resolve_empty_host():
    with pytest.raises(AddressResolutionFailed):
        Transport.resolve("")


def test_open_without_privilege(monkeypatch):
    def deny(*args, **kwargs):
        raise PermissionError(errno.EPERM, "Operation not permitted")
    monkeypatch.setattr(transport_module.socket, "socket", deny)
    with pytest.raises(PermissionDenied) as info:
        Transport.open("127.0.0.1")
    assert isinstance(info.value, SocketCreationFailed)


def test_open_socket_creation_failure(monkeypatch):
    def unsupported(*args, **kwargs):
        raise OSError(errno.EPROTONOSUPPORT, "Protocol not supported")
    monkeypatch.setattr(transport_module.socket, "socket", unsupported)
    with pytest.raises(SocketCreationFailed) as info:
        Transport.open("127.0.0.1")
    assert not isinstance(info.value, PermissionDenied)


def test_open_uses_raw_socket_for_resolved_family(monkeypatch):
    created = []

    class Recorder(StubSocket):
        def __init__(self, family, sock_type, proto):
            super().__init__()
            created.append((family, sock_type, proto))

        def settimeout(self, value):
            self.timeout = value

    monkeypatch.setattr(transport_module.socket, "socket", Recorder)
    transport = Transport.open("127.0.0.1")
    assert created == [(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)]
    assert transport.host == "127.0.0.1"
    assert not transport.ipv6
    assert transport.local_identifier() is None


def test_send_writes_to_destination():
    sock = StubSocket()
    transport = Transport(sock, ("10.0.0.1", 0), socket.AF_INET)
    transport.send(b"12345678")
    assert sock.sent == [(b"12345678", ("10.0.0.1", 0))]


def test_send_failure_wraps_os_error():
    error = OSError(errno.ENETUNREACH, "Network is unreachable")
    transport = Transport(StubSocket(send_error=error), ("10.0.0.1", 0), socket.AF_INET)
    with pytest.raises(SendFailed) as info:
        transport.send(b"12345678")
    assert info.value.os_error is error


def test_short_write_is_a_send_failure():
    transport = Transport(StubSocket(send_result=3), ("10.0.0.1", 0), socket.AF_INET)
    with pytest.raises(SendFailed):
        transport.send(b"12345678")


def test_send_after_close_fails():
    transport = Transport(StubSocket(), ("10.0.0.1", 0), socket.AF_INET)
    transport.close()
    with pytest.raises(SendFailed):
        transport.send(b"12345678")


def test_receive_loop_strips_ip_header_and_retries_timeouts():
    reply = icmp.encode_echo_reply(1, 2, b"abcd")
    ip_header = struct.pack("!BBHHHBBH4s4s", 0x45, 0, 20 + len(reply), 0, 0, 64, 1, 0,
                            bytes([10, 0, 0, 1]), bytes([10, 0, 0, 2]))
    sock = StubSocket(recv_script=[socket.timeout(), BlockingIOError(), ip_header + reply])
    transport = Transport(sock, ("10.0.0.1", 0), socket.AF_INET)
    received = []
    errors = []

    def on_packet(data):
        received.append(data)
        transport.close()

    transport.receive_loop(on_packet, errors.append)
    assert received == [reply]
    assert errors == []


def test_receive_loop_reports_read_error_once():
    error = OSError(errno.EIO, "Input/output error")
    transport = Transport(StubSocket(recv_script=[error]), ("10.0.0.1", 0), socket.AF_INET)
    errors = []
    transport.receive_loop(lambda data: None, errors.append)
    assert errors == [error]


def test_receive_loop_survives_handler_errors():
    packets = [icmp.encode_echo_reply(1, 1), icmp.encode_echo_reply(1, 2)]
    transport = Transport(StubSocket(recv_script=list(packets)), ("::1", 0, 0, 0), socket.AF_INET6)
    seen = []

    def on_packet(data):
        seen.append(data)
        if len(seen) == 1:
            raise RuntimeError("boom")
        transport.close()

    transport.receive_loop(on_packet)
    assert seen == packets


def test_close_stops_receiving_thread():
    sock = StubSocket()
    transport = Transport(sock, ("10.0.0.1", 0), socket.AF_INET)
    errors = []
    thread = transport.start_receiving(lambda data: None, errors.append)
    assert thread.is_alive()
    closer = threading.Thread(target=transport.close)
    closer.start()
    closer.join()
    transport.join(1.0)
    assert not thread.is_alive()
    assert sock.closed
    assert errors == []
    # closing twice is harmless
    transport.close()
