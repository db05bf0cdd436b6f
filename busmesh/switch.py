"""Packet switching between several attached buses."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Protocol

from .strategy import ACK, FAIL

NOT_ASSIGNED = 255
"""Device id meaning that no id has been given."""

BROADCAST = 0
"""Receiver id addressing every device on a bus."""

MODE_BIT = 0x01
"""Header and configuration bit selecting shared mode (bus ids in use)."""

TX_INFO_BIT = 0x02
"""Header bit telling that sender information is included."""

ACK_REQ_BIT = 0x04
"""Header bit requesting a synchronous acknowledgement."""

CONNECTION_LOST = 101
"""Error code reported when a packet could not be delivered."""

MAX_BUSES = 5
"""Largest number of buses a switch attaches; further buses are ignored."""

MAX_PACKETS = 5
"""Default size of each bus's outgoing packet buffer."""

LOCALHOST = bytes(4)
"""The bus id 0.0.0.0, used by buses in local mode."""


@dataclass
class Endpoint:
    """A device address: device id and 4-byte bus id."""

    id: int = 0
    bus_id: bytes = LOCALHOST

    def __post_init__(self) -> None:
        self.bus_id = bytes(self.bus_id)
        if len(self.bus_id) != 4:
            raise ValueError(f"bus id must be 4 bytes, got {len(self.bus_id)}")


@dataclass
class PacketInfo:
    """Header fields of a received or forwarded packet."""

    header: int = 0
    rx: Endpoint = field(default_factory=Endpoint)
    tx: Endpoint = field(default_factory=Endpoint)
    custom_pointer: Any = None

    def copy(self) -> PacketInfo:
        """Return a copy whose endpoints can be changed independently."""
        return replace(self, rx=replace(self.rx), tx=replace(self.tx))


class Bus(Protocol):
    """What a switch needs from each attached bus.

    The bus calls its receiver as ``receiver(payload, packet_info)`` and its
    error handler as ``error(code, data)``.
    """

    tx: Endpoint
    config: int
    strategy: Any

    def set_receiver(self, receiver: Callable[[bytes, PacketInfo], None]) -> None: ...

    def set_error(self, error: Callable[[int, int], None]) -> None: ...

    def set_custom_pointer(self, pointer: Any) -> None: ...

    def set_router(self, enabled: bool) -> None: ...

    def begin(self) -> None: ...

    def receive(self, duration: int) -> int: ...

    def update(self) -> None: ...

    def forward(self, packet_info: PacketInfo, payload: bytes) -> Any: ...

    def forward_blocking(self, packet_info: PacketInfo, payload: bytes) -> int: ...


class SimpleSwitch:
    """Routes packets between attached buses by bus id.

    Shared-mode packets go to buses whose bus id matches the receiver bus id;
    local-mode packets go to buses with the bus id 0.0.0.0. An optional
    default gateway, an index among the attached buses, also receives each
    routed packet. NAT is applied between local buses carrying a public bus
    id and shared buses.
    """

    max_packets: int = MAX_PACKETS

    def __init__(
        self,
        buses: Iterable[Bus] = (),
        default_gateway: int | None = None,
    ) -> None:
        self._buses: list[Bus] = []
        self.default_gateway: int | None = None
        self._current_bus: int | None = None
        self.connect_buses(buses, default_gateway)

    @property
    def bus_count(self) -> int:
        return len(self._buses)

    def connect_buses(
        self, buses: Iterable[Bus], default_gateway: int | None = None
    ) -> None:
        """Attach up to ``MAX_BUSES`` buses and route their packets here."""
        self._buses = list(buses)[:MAX_BUSES]
        self.default_gateway = default_gateway
        for bus in self._buses:
            bus.set_receiver(self.receiver_function)
            bus.set_error(self.error_function)
            bus.set_custom_pointer(self)
            bus.set_router(True)

    def begin(self) -> None:
        for bus in self._buses:
            bus.begin()

    def loop(self) -> None:
        """Receive from every bus, then let every bus send what is pending."""
        try:
            for index, bus in enumerate(self._buses):
                self._current_bus = index
                code = bus.receive(bus.strategy.get_receive_time())
                if self.max_packets < self.bus_count and code == ACK:
                    break
            for index, bus in enumerate(self._buses):
                self._current_bus = index
                bus.update()
        finally:
            self._current_bus = None

    def get_callback_bus(self) -> int | None:
        """Return the index of the bus currently in a callback, or None."""
        return self._current_bus

    def get_bus(self, ix: int) -> Bus:
        return self._buses[ix]

    def receiver_function(self, payload: bytes, packet_info: PacketInfo) -> None:
        """Receiver callback registered on every attached bus."""
        self._dynamic_receiver_function(bytes(payload), packet_info)

    def error_function(self, code: int, data: int) -> None:
        """Error callback registered on every attached bus."""
        self._dynamic_error_function(code, data)

    def _dynamic_receiver_function(
        self, payload: bytes, packet_info: PacketInfo
    ) -> None:
        target = (
            packet_info.rx.bus_id if packet_info.header & MODE_BIT else LOCALHOST
        )
        sender_bus = self._current_bus
        ack_sent = False
        for receiver_bus in self._find_bus_with_id(target, packet_info.rx.id):
            ack_sent = self._forward_packet(
                payload, receiver_bus, sender_bus, ack_sent, packet_info
            )
        # The search always ends by falling back to the default gateway.
        self._forward_packet(
            payload, self.default_gateway, sender_bus, ack_sent, packet_info
        )

    def _dynamic_error_function(self, code: int, data: int) -> None:
        """Hook for errors reported by the buses; ignored here."""

    def _find_attached_bus_with_id(self, bus_id: bytes) -> Iterator[int]:
        for index, bus in enumerate(self._buses):
            if bus.tx.bus_id == bus_id:
                yield index

    def _find_bus_with_id(self, bus_id: bytes, device_id: int) -> Iterator[int]:
        """Yield, in order, every bus index the packet should go to."""
        return self._find_attached_bus_with_id(bus_id)

    def _forward_packet(
        self,
        payload: bytes,
        receiver_bus: int | None,
        sender_bus: int | None,
        ack_sent: bool,
        packet_info: PacketInfo,
    ) -> bool:
        if receiver_bus is not None and receiver_bus != sender_bus:
            return self._send_packet(
                payload, receiver_bus, sender_bus, ack_sent, packet_info
            )
        return ack_sent

    def _send_packet(
        self,
        payload: bytes,
        receiver_bus: int,
        sender_bus: int | None,
        ack_sent: bool,
        packet_info: PacketInfo,
    ) -> bool:
        """Deliver to one bus; return whether the ACK has now been sent."""
        sender = self._buses[sender_bus] if sender_bus is not None else None
        if (
            sender is not None
            and not ack_sent
            and packet_info.header & ACK_REQ_BIT
            and packet_info.rx.id != BROADCAST
        ):
            sender.strategy.send_response(ACK)
            ack_sent = True

        previous = self._current_bus
        self._current_bus = receiver_bus
        try:
            receiver = self._buses[receiver_bus]
            info = packet_info.copy()
            shared = bool(packet_info.header & MODE_BIT)
            if (
                shared
                and sender is not None
                and not sender.config & MODE_BIT
                and sender.tx.bus_id != LOCALHOST
                and packet_info.tx.bus_id == LOCALHOST
            ):
                info.tx.bus_id = sender.tx.bus_id
            if (
                shared
                and not receiver.config & MODE_BIT
                and receiver.tx.bus_id != LOCALHOST
                and packet_info.rx.bus_id == receiver.tx.bus_id
            ):
                info.rx.bus_id = LOCALHOST

            if self.max_packets == 0:
                if receiver.forward_blocking(info, payload) == FAIL:
                    self._dynamic_error_function(CONNECTION_LOST, 0)
            else:
                receiver.forward(info, payload)
        finally:
            self._current_bus = previous
        return ack_sent