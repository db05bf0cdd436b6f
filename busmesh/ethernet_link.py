"""Packet delivery between devices over TCP connections."""

from __future__ import annotations

import random
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Callable

from .ethernet_wire import (
    CONNECTION_HEADER_A,
    CONNECTION_HEADER_A_ACK,
    CONNECTION_HEADER_B,
    DEFAULT_PORT,
    FOOTER,
    HEADER,
    IDLE_TIMEOUT_MS,
    MAX_PACKET_SIZE,
    MAX_REMOTE_NODES,
    TcpClient,
    TcpServer,
    encode_frame,
    read_bytes,
    read_until_header,
)
from .strategy import ACK, FAIL

BUSY = 666
"""Result of a send refused because incoming data must be read first."""

LinkReceiver = Callable[[int, bytes, Any], None]

_CONNECT_TIMEOUT_S = 4.0
_REVERSE_TIMEOUT_MS = 2000
_POLL_INTERVAL_S = 0.00025


def _millis() -> float:
    return time.monotonic() * 1000


def _micros() -> int:
    return time.monotonic_ns() // 1000


@dataclass(frozen=True)
class RemoteNode:
    """A device that packets can be delivered to."""

    id: int
    ip: str | bytes
    port: int = DEFAULT_PORT


def _normalise_ip(ip: str | bytes | Sequence[int]) -> str | bytes:
    if isinstance(ip, str):
        return ip
    octets = bytes(ip)
    if len(octets) != 4:
        raise ValueError(f"IPv4 address must be 4 bytes, got {len(octets)}")
    return octets


class EthernetLink:
    """Delivers packets to registered nodes and accepts packets from others.

    By default one connection is opened per packet and direction. With
    ``keep_connection`` the outgoing connection stays open until another
    node is addressed. With ``single_initiate_direction`` the side that does
    not listen opens both connections, one for each packet direction.
    ``request_ack`` makes every delivery wait for an acknowledgement.
    """

    def __init__(self, local_id: int = 0) -> None:
        self.id = local_id
        self.keep_connection = False
        self.request_ack = False
        self.connection_time = 0.0
        self.connection_count = 0
        self.nodes: list[RemoteNode] = []
        self.local_port = DEFAULT_PORT

        self._server: TcpServer | None = None
        self._client_out = TcpClient()
        self._client_in = TcpClient()
        self._current_device: int | None = None
        self._ack_requested = False
        self._last_receive_time = 0.0
        self._receiver: LinkReceiver | None = None
        self._callback_object: Any = None
        self._single_socket = False
        self._receive_and_discard = False
        self._initiate_both_sockets = False
        self._initiator = True

    def __enter__(self) -> EthernetLink:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Configuration -------------------------------------------------------

    def add_node(
        self,
        remote_id: int,
        remote_ip: str | bytes | Sequence[int],
        port: int = DEFAULT_PORT,
    ) -> int:
        """Register a node; return its position in the node table."""
        if len(self.nodes) >= MAX_REMOTE_NODES:
            raise ValueError(f"node table is full ({MAX_REMOTE_NODES} nodes)")
        self.nodes.append(RemoteNode(remote_id, _normalise_ip(remote_ip), port))
        return len(self.nodes) - 1

    def find_remote_node(self, remote_id: int | None) -> int | None:
        """Return the table position of ``remote_id``, or None."""
        return next(
            (pos for pos, node in enumerate(self.nodes) if node.id == remote_id),
            None,
        )

    def start_listening(self, port: int = DEFAULT_PORT) -> int:
        """Accept incoming connections; return the port listened on.

        A listening link is never the initiator of both sockets.
        """
        self.local_port = port
        self._initiator = False
        if self._server is None:
            server = TcpServer(port)
            server.begin()
            self._server = server
        self.local_port = self._server.port
        return self.local_port

    def single_initiate_direction(self, enabled: bool) -> None:
        """Let one side open the sockets for both packet directions."""
        self._initiate_both_sockets = enabled
        self.keep_connection = True
        self.request_ack = True

    def set_receiver(
        self, receiver: LinkReceiver | None, callback_object: Any = None
    ) -> None:
        """Call ``receiver(sender_id, payload, callback_object)`` per packet."""
        self._receiver = receiver
        self._callback_object = callback_object

    # Connection handling -------------------------------------------------

    def _got_receive_timeout(self) -> bool:
        return _millis() - self._last_receive_time > IDLE_TIMEOUT_MS

    def _disconnect_in(self) -> None:
        if self._initiate_both_sockets and self._client_out:
            self._client_out.stop()
        if self._client_in:
            self._client_in.stop()

    def _disconnect_out(self) -> None:
        if self._client_out:
            self._client_out.stop()
        if self._initiate_both_sockets and self._client_in:
            self._client_in.stop()

    def _disconnect_out_if_needed(self, result: int) -> None:
        if self._client_out and (result == FAIL or not self.keep_connection):
            self._client_out.stop()

    def _disconnect_in_if_needed(self) -> None:
        if self._client_in and not self.keep_connection:
            self._client_in.stop()

    def connect(self, remote_id: int | None) -> bool:
        """Make sure the outgoing connection goes to ``remote_id``."""
        pos = self.find_remote_node(remote_id)
        disconnect = not self.keep_connection
        reverse = self._initiate_both_sockets and self._initiator

        if not disconnect and self._client_out and self._current_device != remote_id:
            disconnect = True
            self._current_device = None
        if not disconnect and self._client_out and not self._client_out.connected():
            disconnect = True
        if reverse and not disconnect:
            if self._client_in and not self._client_in.connected():
                disconnect = True
            elif not self._client_in or not self._client_out:
                disconnect = True
            elif self._got_receive_timeout():
                disconnect = True
        if disconnect:
            self._disconnect_out()

        connected = bool(self._client_out)
        if pos is None:
            return False
        node = self.nodes[pos]

        did_connect = False
        if not connected:
            connected = self._client_out.connect(
                node.ip, node.port, _CONNECT_TIMEOUT_S
            )
            if connected:
                header = CONNECTION_HEADER_A_ACK if self.request_ack else CONNECTION_HEADER_A
                if self._client_out.write(header.to_bytes(4, "big")) != 4:
                    connected = False
            if connected:
                did_connect = True
            else:
                self._client_out.stop()

        connected_rev = False
        if connected and reverse:
            connected_rev = bool(self._client_in)
            if not connected_rev:
                start = _millis()
                while True:
                    connected_rev = self._client_in.connect(
                        node.ip, node.port, _REVERSE_TIMEOUT_MS / 1000
                    )
                    if connected_rev or _millis() - start >= _REVERSE_TIMEOUT_MS:
                        break
                if connected_rev:
                    header = CONNECTION_HEADER_B.to_bytes(4, "big")
                    if self._client_in.write(header) != 4:
                        connected_rev = False
                if connected_rev:
                    self._ack_requested = self.request_ack
                    did_connect = True
                    self._last_receive_time = _millis()

        if did_connect:
            self.connection_time = _millis()
            self.connection_count += 1
            if self._single_socket:
                self._ack_requested = self.request_ack

        if not connected or (reverse and not connected_rev):
            self._disconnect_out()
            self._current_device = None
            time.sleep(0.01)
            return False
        self._current_device = remote_id
        return True

    def accept(self) -> bool:
        """Make sure an incoming connection is open; accept one if needed."""
        disconnect = not self.keep_connection
        reverse = self._initiate_both_sockets and not self._initiator
        if not disconnect and self._client_in and not self._client_in.connected():
            disconnect = True
        if reverse and not disconnect:
            if self._client_out and not self._client_out.connected():
                disconnect = True
            elif not self._client_in or not self._client_out:
                disconnect = True
        if not disconnect and self._client_in and self._got_receive_timeout():
            disconnect = True
        if disconnect:
            self._disconnect_in()

        did_connect = False
        connected = bool(self._client_in)
        if not connected:
            if self._server is None:
                return False
            self._client_in = self._server.available() or TcpClient()
            connected = bool(self._client_in)
            if connected:
                header = read_bytes(self._client_in, 4)
                header_ok = True
                if header == CONNECTION_HEADER_A.to_bytes(4, "big"):
                    self._ack_requested = False
                elif header == CONNECTION_HEADER_A_ACK.to_bytes(4, "big"):
                    self._ack_requested = True
                else:
                    header_ok = False
                if header_ok:
                    did_connect = True
                else:
                    self._disconnect_in()
                    connected = False

        if connected and reverse and not self._client_out and self._server is not None:
            self.request_ack = self._ack_requested
            start = _millis()
            client = self._server.available()
            while client is None and _millis() - start < _REVERSE_TIMEOUT_MS:
                time.sleep(_POLL_INTERVAL_S)
                client = self._server.available()
            self._client_out = client or TcpClient()
            connected_reverse = bool(self._client_out) and read_bytes(
                self._client_out, 4
            ) == CONNECTION_HEADER_B.to_bytes(4, "big")
            if connected_reverse:
                did_connect = True
            else:
                connected = False
                self._disconnect_in()

        if did_connect:
            self.connection_time = _millis()
            self.connection_count += 1
            self._last_receive_time = _millis()
        return connected

    # Packet transfer -----------------------------------------------------

    def receive_from(self, client: TcpClient, wait: bool) -> int:
        """Read one framed packet from ``client``; return ``ACK`` or ``FAIL``."""
        if wait:
            start = _millis()
            while (
                client.connected()
                and client.available() <= 0
                and _millis() - start < 1000
            ):
                time.sleep(_POLL_INTERVAL_S)
        avail = client.available() if client else 0
        if avail <= 0:
            return FAIL

        ok = read_until_header(client, HEADER)
        sender_id = 0
        content_length = 0
        if ok:
            head = read_bytes(client, 5)
            if len(head) != 5:
                ok = False
            else:
                sender_id = head[0]
                content_length = int.from_bytes(head[1:5], "big")
                if content_length == 0:
                    ok = False

        if content_length > MAX_PACKET_SIZE:
            return FAIL

        content = b""
        if ok:
            content = read_bytes(client, content_length)
            ok = len(content) == content_length
        if ok:
            ok = read_bytes(client, 4) == FOOTER.to_bytes(4, "big")

        result = ACK if ok else FAIL
        if ok:
            self._last_receive_time = _millis()
        if self._ack_requested and not self._receive_and_discard and ok:
            client.write(result.to_bytes(2, "big"))
            client.flush()

        if ok and not self._receive_and_discard and self._receiver is not None:
            self._receiver(sender_id, content, self._callback_object)
        if not ok:
            self._disconnect_in()
        return result

    def send_to(self, client: TcpClient, remote_id: int, packet: bytes) -> int:
        """Write one framed packet to ``client``; return ``ACK``, ``FAIL`` or ``BUSY``."""
        if not self._single_socket and self._client_in:
            if self._client_in.available() > 0:
                return BUSY
        frame = encode_frame(remote_id, packet)
        ok = client.write(frame) == len(frame)
        if ok:
            client.flush()
        if not self.request_ack:
            return ACK if ok else FAIL
        if ok:
            code = read_bytes(client, 2)
            if len(code) == 2 and int.from_bytes(code, "big") == ACK:
                return ACK
        return FAIL

    def _receive_once(self) -> int:
        if self._server is None:
            if self._single_socket:
                return FAIL
            if self._initiate_both_sockets and self._initiator:
                remote_id = self.nodes[0].id if len(self.nodes) == 1 else None
                self.connect(remote_id)
                result = self.receive_from(self._client_in, False)
                self._disconnect_out_if_needed(ACK)
                self._disconnect_in_if_needed()
                return result
            return FAIL
        if self._single_socket:
            return FAIL
        if not self.accept():
            return FAIL
        result = self.receive_from(self._client_in, not self.keep_connection)
        self._disconnect_in_if_needed()
        return result

    def receive(self, duration_us: int | None = None) -> int:
        """Receive a packet; with ``duration_us``, keep trying for that long."""
        if duration_us is None:
            return self._receive_once()
        start = _micros()
        while True:
            result = self._receive_once()
            if result == ACK or _micros() - start > duration_us:
                return result
            time.sleep(_POLL_INTERVAL_S)

    def send(self, remote_id: int, packet: bytes) -> int:
        """Deliver ``packet`` to ``remote_id``; return ``ACK``, ``FAIL`` or ``BUSY``."""
        if self._single_socket:
            return FAIL
        if self._initiate_both_sockets and not self._initiator:
            connected = self.accept()
        else:
            connected = self.connect(remote_id)
        result = self.send_to(self._client_out, remote_id, packet) if connected else FAIL
        self._disconnect_out_if_needed(result)
        return result

    def send_with_duration(
        self, remote_id: int, packet: bytes, duration_us: int
    ) -> int:
        """Keep trying to deliver ``packet`` for up to ``duration_us``."""
        start = _micros()
        while True:
            result = self.send(remote_id, packet)
            if result == ACK or _micros() - start > duration_us:
                return result
            time.sleep(random.randrange(250) / 1_000_000)

    def poll_receive(self, remote_id: int) -> int:
        """Check for an incoming packet from ``remote_id``."""
        if self._single_socket:
            return FAIL
        return self.receive()

    def close(self) -> None:
        """Close every connection and stop listening."""
        self._client_out.stop()
        self._client_in.stop()
        self._current_device = None
        if self._server is not None:
            self._server.close()
            self._server = None