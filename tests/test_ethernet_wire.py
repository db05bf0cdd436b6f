import socket
import time

import pytest

from busmesh.ethernet_wire import (
    FOOTER,
    HEADER,
    TcpClient,
    TcpServer,
    encode_frame,
    read_bytes,
    read_until_header,
)


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    client = TcpClient(a)
    yield client, b
    client.stop()
    b.close()


def test_encode_frame_layout():
    frame = encode_frame(45, b"abc")
    assert frame[:4] == bytes([0x18, 0xAB, 0xC4, 0x27])
    assert frame[4] == 45
    assert frame[5:9] == b"\x00\x00\x00\x03"
    assert frame[9:12] == b"abc"
    assert frame[12:] == bytes([0x9A, 0xBE, 0x88, 0x73])


def test_encode_frame_rejects_wide_sender():
    with pytest.raises(ValueError):
        encode_frame(256, b"x")


def test_read_bytes_exact(pair):
    client, peer = pair
    peer.sendall(b"hello world")
    assert read_bytes(client, 5) == b"hello"
    assert read_bytes(client, 6) == b" world"


def test_read_bytes_times_out_with_partial(pair):
    client, peer = pair
    peer.sendall(b"ab")
    assert read_bytes(client, 4, timeout_ms=50) == b"ab"
    assert bool(client) is True


def test_read_bytes_stops_client_on_close(pair):
    client, peer = pair
    peer.sendall(b"ab")
    peer.close()
    assert read_bytes(client, 4) == b"ab"
    assert bool(client) is False
    assert client.connected() is False


def test_available_counts_waiting_bytes(pair):
    client, peer = pair
    assert client.available() == 0
    peer.sendall(b"xyz")
    deadline = time.monotonic() + 2
    while client.available() < 3 and time.monotonic() < deadline:
        time.sleep(0.001)
    assert client.available() == 3


def test_read_until_header_resyncs(pair):
    client, peer = pair
    peer.sendall(b"junk" + HEADER.to_bytes(4, "big") + b"rest")
    assert read_until_header(client, HEADER) is True
    assert read_bytes(client, 4) == b"rest"


def test_read_until_header_fails_without_header(pair):
    client, peer = pair
    peer.sendall(b"no header in here")
    peer.close()
    assert read_until_header(client, HEADER) is False


def test_frame_round_trip(pair):
    client, peer = pair
    peer.sendall(encode_frame(7, b"payload"))
    assert read_until_header(client, HEADER) is True
    meta = read_bytes(client, 5)
    assert meta[0] == 7
    length = int.from_bytes(meta[1:], "big")
    assert read_bytes(client, length) == b"payload"
    assert read_bytes(client, 4) == FOOTER.to_bytes(4, "big")


def test_write_reaches_peer(pair):
    client, peer = pair
    assert client.write(b"data") == 4
    peer.settimeout(2)
    assert peer.recv(4) == b"data"


def test_server_accepts_client():
    server = TcpServer(0, "127.0.0.1")
    server.begin()
    client = TcpClient()
    try:
        assert server.available() is None
        assert client.connect("127.0.0.1", server.port, 2.0) is True
        accepted = None
        deadline = time.monotonic() + 2
        while accepted is None and time.monotonic() < deadline:
            accepted = server.available()
            time.sleep(0.001)
        assert accepted is not None and bool(accepted)
        client.write(b"abc")
        assert read_bytes(accepted, 3) == b"abc"
        accepted.stop()
    finally:
        client.stop()
        server.close()


def test_connect_with_byte_address():
    server = TcpServer(0, "127.0.0.1")
    server.begin()
    client = TcpClient()
    try:
        assert client.connect(bytes([127, 0, 0, 1]), server.port, 2.0) is True
        assert client.connected() is True
    finally:
        client.stop()
        server.close()


def test_connect_rejects_bad_address():
    with pytest.raises(ValueError):
        TcpClient().connect(b"\x7f\x00\x01", 7000)


def test_connect_refused_returns_false():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    client = TcpClient()
    assert client.connect("127.0.0.1", port, 1.0) is False
    assert bool(client) is False