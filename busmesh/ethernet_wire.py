"""TCP sockets and the framing used by the Ethernet link."""

from __future__ import annotations

import select
import socket
import time
from collections.abc import Sequence

DEFAULT_PORT = 7000
"""Port listened on and connected to when none is given."""

MAX_REMOTE_NODES = 10
"""Largest number of remote nodes a link registers."""

MAX_PACKET_SIZE = 300
"""Largest frame content accepted from the wire."""

IDLE_TIMEOUT_MS = 30000
"""Idle time after which an incoming socket is considered dead."""

HEADER = 0x18ABC427
FOOTER = 0x9ABE8873
SINGLE_SOCKET_HEADER = 0x4E92AC90
SINGLE_SOCKET_FOOTER = 0x7BB1E3F4
CONNECTION_HEADER_A = 0xFEDFED67
"""Opens the socket carrying packets in the initiated direction."""
CONNECTION_HEADER_A_ACK = 0xFEDFED68
"""As ``CONNECTION_HEADER_A``, requesting an ACK for every packet."""
CONNECTION_HEADER_B = 0xFEDFED77
"""Opens the socket carrying packets in the reverse direction."""

_PEEK_SIZE = 65536
_WRITE_TIMEOUT = 5.0
_POLL_INTERVAL = 0.00025


def _format_ip(ip: str | bytes | Sequence[int]) -> str:
    if isinstance(ip, str):
        return ip
    octets = bytes(ip)
    if len(octets) != 4:
        raise ValueError(f"IPv4 address must be 4 bytes, got {len(octets)}")
    return ".".join(str(octet) for octet in octets)


class TcpClient:
    """A TCP connection; false when not connected."""

    def __init__(self, sock: socket.socket | None = None) -> None:
        self._sock: socket.socket | None = None
        self._closed = False
        if sock is not None:
            self._adopt(sock)

    def _adopt(self, sock: socket.socket) -> None:
        sock.settimeout(_WRITE_TIMEOUT)
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError:
            pass
        self._sock = sock
        self._closed = False

    def __bool__(self) -> bool:
        return self._sock is not None

    def connect(
        self,
        ip: str | bytes | Sequence[int],
        port: int = DEFAULT_PORT,
        timeout: float = 4.0,
    ) -> bool:
        """Open a connection, replacing any existing one; True on success."""
        self.stop()
        try:
            sock = socket.create_connection((_format_ip(ip), port), timeout)
        except OSError:
            return False
        self._adopt(sock)
        return True

    def _poll(self) -> int:
        """Bytes waiting to be read, or -1 if the connection is gone."""
        if self._sock is None or self._closed:
            return -1
        try:
            readable, _, _ = select.select([self._sock], [], [], 0)
            if not readable:
                return 0
            peeked = self._sock.recv(_PEEK_SIZE, socket.MSG_PEEK)
        except OSError:
            self._closed = True
            return -1
        if not peeked:
            self._closed = True
            return -1
        return len(peeked)

    def connected(self) -> bool:
        return self._poll() >= 0

    def available(self) -> int:
        """Number of bytes that can be read without waiting."""
        return max(self._poll(), 0)

    def read(self, size: int) -> bytes | None:
        """Read up to ``size`` waiting bytes; None once the connection is gone."""
        if self._sock is None or self._closed:
            return None
        try:
            readable, _, _ = select.select([self._sock], [], [], 0)
            if not readable:
                return b""
            data = self._sock.recv(size)
        except OSError:
            self._closed = True
            return None
        if not data:
            self._closed = True
            return None
        return data

    def write(self, data: bytes) -> int:
        """Send all of ``data``; return the number of bytes written."""
        if self._sock is None or self._closed:
            return 0
        try:
            self._sock.sendall(data)
        except OSError:
            self._closed = True
            return 0
        return len(data)

    def flush(self) -> None:
        """Wait until the socket can accept more data, or the write timeout passes."""
        if self._sock is None or self._closed:
            return
        try:
            select.select([], [self._sock], [], _WRITE_TIMEOUT)
        except (OSError, ValueError):
            self._closed = True

    def stop(self) -> None:
        """Close the connection."""
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None
                self._closed = False


class TcpServer:
    """A listening socket that hands out accepted connections without blocking."""

    def __init__(self, port: int = DEFAULT_PORT, host: str = "0.0.0.0") -> None:
        self.port = port
        self.host = host
        self._sock: socket.socket | None = None

    def begin(self) -> None:
        """Start listening; with port 0 the chosen port is stored in ``port``."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.listen()
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        self.port = sock.getsockname()[1]
        self._sock = sock

    def available(self) -> TcpClient | None:
        """Return a newly accepted connection, or None if none is pending."""
        if self._sock is None:
            return None
        try:
            conn, _ = self._sock.accept()
        except (BlockingIOError, InterruptedError):
            return None
        return TcpClient(conn)

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None


def encode_frame(sender_id: int, content: bytes) -> bytes:
    """Frame ``content``: header, sender id, length, content and footer."""
    if not 0 <= sender_id <= 0xFF:
        raise ValueError(f"sender id must fit in one byte, got {sender_id}")
    content = bytes(content)
    return (
        HEADER.to_bytes(4, "big")
        + bytes([sender_id])
        + len(content).to_bytes(4, "big")
        + content
        + FOOTER.to_bytes(4, "big")
    )


def read_bytes(client: TcpClient, length: int, timeout_ms: int = 2000) -> bytes:
    """Read up to ``length`` bytes within ``timeout_ms``.

    If the connection is lost the client is stopped and what arrived so far
    is returned.
    """
    data = bytearray()
    deadline = time.monotonic() + timeout_ms / 1000
    while len(data) < length:
        while (
            client.connected()
            and client.available() <= 0
            and time.monotonic() < deadline
        ):
            time.sleep(_POLL_INTERVAL)
        chunk = client.read(length - len(data))
        if chunk is None:
            client.stop()
            break
        data += chunk
        if time.monotonic() >= deadline:
            break
    return bytes(data)


def read_until_header(client: TcpClient, header: int) -> bool:
    """Discard bytes until the 4-byte ``header`` has been read."""
    expected = header.to_bytes(4, "big")
    window = bytearray(read_bytes(client, 4).ljust(4, b"\x00"))
    while window != expected:
        byte = read_bytes(client, 1)
        if len(byte) != 1:
            break
        window = window[1:] + byte
    return window == expected