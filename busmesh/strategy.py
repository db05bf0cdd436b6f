"""Strategy interface for bus transports, and adapters for choosing one at run time."""

from __future__ import annotations

from abc import ABC, abstractmethod

ACK = 6
"""Response code confirming that a frame was received."""

FAIL = 0x100
"""Result code for a failed or missing response."""


class Strategy(ABC):
    """A transport that moves frames and single-byte responses between devices."""

    @abstractmethod
    def back_off(self, attempts: int) -> int:
        """Return the suggested delay in microseconds after ``attempts`` tries."""

    @abstractmethod
    def begin(self, did: int = 0) -> bool:
        """Initialise the transport; ``did`` is the local device id."""

    @abstractmethod
    def can_start(self) -> bool:
        """Return True if the medium is free for transmission."""

    @abstractmethod
    def get_max_attempts(self) -> int:
        """Return the maximum number of attempts for each transmission."""

    @abstractmethod
    def get_receive_time(self) -> int:
        """Return the recommended receive time in microseconds."""

    @abstractmethod
    def handle_collision(self) -> None:
        """React to a collision on the medium."""

    @abstractmethod
    def receive_frame(self, max_length: int) -> bytes | None:
        """Return a received frame, or None if nothing valid arrived."""

    @abstractmethod
    def receive_response(self) -> int:
        """Wait for a response and return ``ACK`` or ``FAIL``."""

    @abstractmethod
    def send_response(self, response: int) -> None:
        """Send a single-byte response to the frame's transmitter."""

    @abstractmethod
    def send_frame(self, data: bytes) -> None:
        """Transmit a frame."""


class StrategyLink(Strategy):
    """Wraps a concrete strategy behind the common interface."""

    def __init__(self, strategy: Strategy) -> None:
        self.strategy = strategy

    def back_off(self, attempts: int) -> int:
        return self.strategy.back_off(attempts)

    def begin(self, did: int = 0) -> bool:
        return self.strategy.begin(did)

    def can_start(self) -> bool:
        return self.strategy.can_start()

    def get_max_attempts(self) -> int:
        return self.strategy.get_max_attempts()

    def get_receive_time(self) -> int:
        return self.strategy.get_receive_time()

    def handle_collision(self) -> None:
        self.strategy.handle_collision()

    def receive_frame(self, max_length: int) -> bytes | None:
        return self.strategy.receive_frame(max_length)

    def receive_response(self) -> int:
        return self.strategy.receive_response()

    def send_response(self, response: int) -> None:
        self.strategy.send_response(response)

    def send_frame(self, data: bytes) -> None:
        self.strategy.send_frame(data)


class AnyStrategy(Strategy):
    """Delegates to a link that can be replaced while running."""

    def __init__(self, link: Strategy | None = None) -> None:
        self._link = link

    def set_link(self, link: Strategy | None) -> None:
        """Select the link that subsequent calls are delegated to."""
        self._link = link

    @property
    def link(self) -> Strategy:
        if self._link is None:
            raise RuntimeError("no strategy link has been set")
        return self._link

    def back_off(self, attempts: int) -> int:
        return self.link.back_off(attempts)

    def begin(self, did: int = 0) -> bool:
        return self.link.begin(did)

    def can_start(self) -> bool:
        return self.link.can_start()

    def get_max_attempts(self) -> int:
        return self.link.get_max_attempts()

    def get_receive_time(self) -> int:
        return self.link.get_receive_time()

    def handle_collision(self) -> None:
        self.link.handle_collision()

    def receive_frame(self, max_length: int) -> bytes | None:
        return self.link.receive_frame(max_length)

    def receive_response(self) -> int:
        return self.link.receive_response()

    def send_response(self, response: int) -> None:
        self.link.send_response(response)

    def send_frame(self, data: bytes) -> None:
        self.link.send_frame(data)