"""Switches and routers that are also devices with their own callbacks."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Callable

from .router import DynamicRouter, Router
from .switch import ACK_REQ_BIT, NOT_ASSIGNED, Bus, PacketInfo, SimpleSwitch

Receiver = Callable[[bytes, PacketInfo], None]
ErrorHandler = Callable[[int, int, Any], None]
SendNotification = Callable[[bytes, int, "int | None", PacketInfo], None]


class InteractiveMixin:
    """Adds a device of its own to a switch or router.

    Packets addressed to the switch's own device id on the bus they arrive on
    are delivered to ``receiver`` instead of being routed. With ``router``
    set, every packet passing through is also delivered to ``receiver``.
    ``error`` is called as ``error(code, data, custom_pointer)`` and
    ``send_notification`` as
    ``send_notification(payload, receiver_bus, sender_bus, packet_info)``
    after each packet is forwarded onto a bus.
    """

    receiver: Receiver | None = None
    error: ErrorHandler | None = None
    send_notification: SendNotification | None = None
    custom_pointer: Any = None
    router: bool = False

    def _configure(
        self,
        receiver: Receiver | None,
        error: ErrorHandler | None,
        send_notification: SendNotification | None,
        custom_pointer: Any,
        router: bool,
    ) -> None:
        self.receiver = receiver
        self.error = error
        self.send_notification = send_notification
        self.custom_pointer = custom_pointer
        self.router = router

    def send_packet(self, payload: bytes, packet_info: PacketInfo) -> None:
        """Send a packet from this device, routing it like a received one."""
        self._dynamic_receiver_function(bytes(payload), packet_info)

    def _is_for_me(self, packet_info: PacketInfo) -> bool:
        current = self._current_bus
        if current is None:
            return False
        own = self._buses[current].tx
        return (
            own.id != NOT_ASSIGNED
            and own.bus_id == packet_info.rx.bus_id
            and own.id == packet_info.rx.id
        )

    def _dynamic_receiver_function(
        self, payload: bytes, packet_info: PacketInfo
    ) -> None:
        for_me = self._is_for_me(packet_info)
        if not for_me:
            super()._dynamic_receiver_function(payload, packet_info)
        elif packet_info.header & ACK_REQ_BIT:
            self._buses[self._current_bus].send_acknowledge()
        # The callback runs only after the packet has been delivered onwards.
        if (self.router or for_me) and self.receiver is not None:
            info = packet_info.copy()
            info.custom_pointer = self.custom_pointer
            self.receiver(payload, info)

    def _dynamic_error_function(self, code: int, data: int) -> None:
        super()._dynamic_error_function(code, data)
        if self.error is not None:
            self.error(code, data, self.custom_pointer)

    def _send_packet(
        self,
        payload: bytes,
        receiver_bus: int,
        sender_bus: int | None,
        ack_sent: bool,
        packet_info: PacketInfo,
    ) -> bool:
        ack_sent = super()._send_packet(
            payload, receiver_bus, sender_bus, ack_sent, packet_info
        )
        if self.send_notification is not None:
            self.send_notification(payload, receiver_bus, sender_bus, packet_info)
        return ack_sent


class InteractiveSwitch(InteractiveMixin, SimpleSwitch):
    """A switch that is also a device."""

    def __init__(
        self,
        buses: Iterable[Bus] = (),
        default_gateway: int | None = None,
        receiver: Receiver | None = None,
        error: ErrorHandler | None = None,
        send_notification: SendNotification | None = None,
        custom_pointer: Any = None,
        router: bool = False,
    ) -> None:
        self._configure(receiver, error, send_notification, custom_pointer, router)
        super().__init__(buses, default_gateway)


class InteractiveRouter(InteractiveMixin, Router):
    """A router with a static table that is also a device."""

    def __init__(
        self,
        buses: Iterable[Bus] = (),
        default_gateway: int | None = None,
        receiver: Receiver | None = None,
        error: ErrorHandler | None = None,
        send_notification: SendNotification | None = None,
        custom_pointer: Any = None,
        router: bool = False,
    ) -> None:
        self._configure(receiver, error, send_notification, custom_pointer, router)
        super().__init__(buses, default_gateway)


class InteractiveDynamicRouter(InteractiveMixin, DynamicRouter):
    """A route-learning router that is also a device."""

    def __init__(
        self,
        buses: Iterable[Bus] = (),
        default_gateway: int | None = None,
        receiver: Receiver | None = None,
        error: ErrorHandler | None = None,
        send_notification: SendNotification | None = None,
        custom_pointer: Any = None,
        router: bool = False,
    ) -> None:
        self._configure(receiver, error, send_notification, custom_pointer, router)
        super().__init__(buses, default_gateway)