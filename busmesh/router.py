"""Switches with a routing table for buses reached through other buses."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from .switch import Bus, PacketInfo, SimpleSwitch

ROUTER_TABLE_SIZE = 10
"""Default routing table capacity of a router."""

DYNAMIC_ROUTER_TABLE_SIZE = 100
"""Default routing table capacity of a dynamic router."""


class Router(SimpleSwitch):
    """A switch that also routes to remote bus ids via a static table."""

    def __init__(
        self,
        buses: Iterable[Bus] = (),
        default_gateway: int | None = None,
        table_size: int = ROUTER_TABLE_SIZE,
    ) -> None:
        self.capacity = table_size
        self._table: list[tuple[bytes, int]] = []
        super().__init__(buses, default_gateway)

    @property
    def routes(self) -> tuple[tuple[bytes, int], ...]:
        """The routing table as (remote bus id, attached bus index) pairs."""
        return tuple(self._table)

    def add(self, bus_id: bytes, via_attached_bus: int) -> bool:
        """Route ``bus_id`` through an attached bus; False if the table is full."""
        bus_id = bytes(bus_id)
        if len(bus_id) != 4:
            raise ValueError(f"bus id must be 4 bytes, got {len(bus_id)}")
        if len(self._table) >= self.capacity:
            return False
        self._table.append((bus_id, via_attached_bus))
        return True

    def _find_bus_in_table(self, bus_id: bytes) -> Iterator[int]:
        for remote_bus_id, via in self._table:
            if remote_bus_id == bus_id:
                yield via

    def _find_bus_with_id(self, bus_id: bytes, device_id: int) -> Iterator[int]:
        yield from self._find_attached_bus_with_id(bus_id)
        yield from self._find_bus_in_table(bus_id)


class DynamicRouter(Router):
    """A router that learns routes to remote buses from the packets it sees."""

    def __init__(
        self,
        buses: Iterable[Bus] = (),
        default_gateway: int | None = None,
        table_size: int = DYNAMIC_ROUTER_TABLE_SIZE,
    ) -> None:
        super().__init__(buses, default_gateway, table_size)

    def _add_sender_to_routing_table(
        self, packet_info: PacketInfo, sender_bus: int | None
    ) -> None:
        known = next(
            self._find_bus_with_id(packet_info.tx.bus_id, packet_info.tx.id), None
        )
        if known is None and sender_bus is not None:
            self.add(packet_info.tx.bus_id, sender_bus)

    def _dynamic_receiver_function(
        self, payload: bytes, packet_info: PacketInfo
    ) -> None:
        self._add_sender_to_routing_table(packet_info, self._current_bus)
        super()._dynamic_receiver_function(payload, packet_info)