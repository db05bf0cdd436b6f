"""Two-way packet exchange over a single TCP connection."""

from __future__ import annotations

from .ethernet_link import EthernetLink
from .ethernet_wire import (
    SINGLE_SOCKET_FOOTER,
    SINGLE_SOCKET_HEADER,
    TcpClient,
    read_bytes,
    read_until_header,
)
from .strategy import ACK, FAIL


class SingleSocketLink(EthernetLink):
    """A link that carries packets in both directions on one connection.

    The side that does not listen is the initiator: it connects, delivers
    its packet (if any), then reads back whatever the listening side has
    waiting before closing the exchange with a footer. Only the initiator
    needs to know where the other side is, so a single firewall opening is
    enough. Every packet is acknowledged and the connection is kept open.
    """

    def __init__(self, local_id: int = 0) -> None:
        super().__init__(local_id)
        self._single_socket = True
        self.keep_connection = True
        self.request_ack = True

    def single_socket_transfer(
        self,
        client: TcpClient,
        remote_id: int | None,
        master: bool,
        contents: bytes | None = None,
    ) -> int:
        """Run one exchange on ``client``, sending ``contents`` if given.

        Returns ``ACK`` if the exchange succeeded and a packet was sent or,
        when nothing was sent, at least one packet was received; otherwise
        ``FAIL``.
        """
        if master:
            return self._transfer_as_initiator(client, remote_id, contents)
        return self._transfer_as_receiver(client, remote_id, contents)

    def _transfer_as_initiator(
        self, client: TcpClient, remote_id: int | None, contents: bytes | None
    ) -> int:
        if not self.connect(remote_id):
            return FAIL

        packets_out = 1 if contents else 0
        head = SINGLE_SOCKET_HEADER.to_bytes(4, "big") + bytes([packets_out])
        ok = client.write(head) == len(head)
        if ok:
            client.flush()

        if ok and packets_out:
            ok = self.send_to(client, remote_id, contents) == ACK

        packets_in = 0
        if ok:
            count = read_bytes(client, 1)
            ok = len(count) == 1
            if ok:
                packets_in = count[0]

        for _ in range(packets_in):
            if not ok:
                break
            ok = self.receive_from(client, True) == ACK

        if ok:
            foot = SINGLE_SOCKET_FOOTER.to_bytes(4, "big")
            ok = client.write(foot) == len(foot)
            if ok:
                client.flush()

        result = ACK if ok else FAIL
        self._disconnect_out_if_needed(result)
        if contents is None:
            return result if packets_in > 0 else FAIL
        return result

    def _transfer_as_receiver(
        self, client: TcpClient, remote_id: int | None, contents: bytes | None
    ) -> int:
        if client and self._got_receive_timeout():
            client.stop()

        was_incoming = client is self._client_in
        if not self.accept():
            return FAIL
        if was_incoming:
            # Accepting may have replaced the incoming connection.
            client = self._client_in

        ok = read_until_header(client, SINGLE_SOCKET_HEADER)
        if ok:
            self._last_receive_time = self._now_ms()

        packets_in = 0
        if ok:
            count = read_bytes(client, 1)
            ok = len(count) == 1
            if ok:
                packets_in = count[0]

        for _ in range(packets_in):
            if not ok:
                break
            ok = self.receive_from(client, True) == ACK

        packets_out = 1 if contents else 0
        if ok:
            ok = client.write(bytes([packets_out])) == 1
            if ok:
                client.flush()

        if ok and packets_out:
            ok = self.send_to(client, remote_id, contents) == ACK

        if ok:
            foot = read_bytes(client, 4)
            ok = foot == SINGLE_SOCKET_FOOTER.to_bytes(4, "big")

        self._disconnect_in_if_needed()
        if not ok:
            client.stop()

        result = ACK if ok else FAIL
        if contents is None:
            return result if packets_in > 0 else FAIL
        return result

    @staticmethod
    def _now_ms() -> float:
        import time

        return time.monotonic() * 1000

    def _receive_once(self) -> int:
        if self._server is None:
            remote_id = self.nodes[0].id if len(self.nodes) == 1 else None
            return self.single_socket_transfer(self._client_out, remote_id, True, None)
        return self.single_socket_transfer(self._client_in, None, False, None)

    def send(self, remote_id: int, packet: bytes) -> int:
        """Exchange packets with ``remote_id``, delivering ``packet``."""
        if self._server is not None:
            return self.single_socket_transfer(
                self._client_in, remote_id, False, packet
            )
        return self.single_socket_transfer(self._client_out, remote_id, True, packet)

    def receive(self, duration_us: int | None = None) -> int:
        """Run an exchange without sending; with ``duration_us``, retry that long."""
        return super().receive(duration_us)

    def poll_receive(self, remote_id: int) -> int:
        """As initiator, connect to ``remote_id`` and collect a waiting packet."""
        if self._server is None:
            return self.single_socket_transfer(self._client_out, remote_id, True, None)
        return FAIL