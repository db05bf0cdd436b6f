"""Strategy that carries frames over a LoRa radio."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any

from .strategy import ACK, FAIL, Strategy

_MIN_FRAME_LENGTH = 5


@dataclass(frozen=True)
class LoraTiming:
    """Timing and size settings; delays and timeouts are in microseconds."""

    initial_delay: int = 1000
    collision_delay: int = 64
    response_timeout: int = 100000
    max_attempts: int = 5
    back_off_degree: int = 5
    response_length: int = 5
    receive_time: int = 0


def _micros() -> int:
    return time.monotonic_ns() // 1000


def _delay_us(microseconds: int) -> None:
    if microseconds > 0:
        time.sleep(microseconds / 1_000_000)


class ThroughLora(Strategy):
    """LoRa transport.

    ``radio`` provides ``begin(frequency)``, ``parse_packet()``, ``available()``,
    ``read()``, ``write(b)``, ``begin_packet()``, ``end_packet()``,
    ``packet_rssi()``, ``packet_snr()``, ``set_signal_bandwidth()``,
    ``set_pins()``, ``set_spreading_factor()``, ``set_coding_rate4()``,
    ``set_preamble_length()``, ``set_sync_word()``, ``enable_crc()``,
    ``disable_crc()``, ``set_tx_power(power[, boost_pin])``, ``idle()``,
    ``sleep()`` and ``random()``.

    The acknowledgement is the last ``response_length`` bytes of the frame,
    which end in the packet's CRC and so identify it.
    """

    def __init__(self, radio: Any, timing: LoraTiming | None = None) -> None:
        self.radio = radio
        self.timing = timing or LoraTiming()
        self._response = bytes(self.timing.response_length)

    def back_off(self, attempts: int) -> int:
        result = attempts
        for _ in range(self.timing.back_off_degree):
            result = (result * attempts) & 0xFFFFFFFF
        return result

    def packet_rssi(self) -> int:
        return self.radio.packet_rssi()

    def packet_snr(self) -> float:
        return self.radio.packet_snr()

    def set_frequency(self, frequency: int) -> bool:
        return bool(self.radio.begin(frequency))

    def set_signal_bandwidth(self, bandwidth: int) -> None:
        self.radio.set_signal_bandwidth(bandwidth)

    def set_pins(self, cs_pin: int, reset_pin: int, dio0_pin: int) -> None:
        self.radio.set_pins(cs_pin, reset_pin, dio0_pin)

    def set_spreading_factor(self, spreading_factor: int) -> None:
        self.radio.set_spreading_factor(spreading_factor)

    def set_coding_rate4(self, coding_rate: int) -> None:
        self.radio.set_coding_rate4(coding_rate)

    def set_preamble_length(self, preamble_length: int) -> None:
        self.radio.set_preamble_length(preamble_length)

    def set_sync_word(self, sync_word: int) -> None:
        self.radio.set_sync_word(sync_word)

    def set_crc(self, enable_crc: bool) -> None:
        if enable_crc:
            self.radio.enable_crc()
        else:
            self.radio.disable_crc()

    def set_tx_power(self, tx_power: int, boost_pin: int | None = None) -> None:
        if boost_pin is None:
            self.radio.set_tx_power(tx_power)
        else:
            self.radio.set_tx_power(tx_power, boost_pin)

    def idle(self) -> None:
        self.radio.idle()

    def sleep(self) -> None:
        self.radio.sleep()

    def get_random(self) -> int:
        return self.radio.random() & 0xFF

    def begin(self, did: int = 0) -> bool:
        _delay_us(random.randrange(max(self.timing.initial_delay, 1)) + did)
        return True

    def can_start(self) -> bool:
        return not self.radio.parse_packet() > 0

    def get_max_attempts(self) -> int:
        return self.timing.max_attempts

    def get_receive_time(self) -> int:
        return self.timing.receive_time

    def handle_collision(self) -> None:
        _delay_us(random.randrange(max(self.timing.collision_delay, 1)))

    def prepare_response(self, buffer: bytes, position: int) -> None:
        """Remember the ``response_length`` bytes ending at ``position``."""
        length = self.timing.response_length
        if position < length or position > len(buffer):
            raise ValueError(
                f"need {length} bytes ending at position {position}, "
                f"buffer holds {len(buffer)}"
            )
        self._response = bytes(buffer[position - length:position])

    def receive_response(self) -> int:
        length = self.timing.response_length
        start = _micros()
        while _micros() - start < self.timing.response_timeout:
            if (self.radio.parse_packet() & 0xFF) == length:
                for expected in self._response:
                    if self.radio.read() != expected:
                        return FAIL
                return ACK
        return FAIL

    def receive_frame(self, max_length: int) -> bytes | None:
        frame_size = self.radio.parse_packet() & 0xFF
        if not _MIN_FRAME_LENGTH < frame_size <= max_length:
            return None
        data = bytearray()
        while self.radio.available():
            data.append(self.radio.read() & 0xFF)
        frame = bytes(data)
        if len(frame) >= self.timing.response_length:
            self.prepare_response(frame, len(frame))
        return frame

    def send_byte(self, b: int) -> None:
        self.radio.write(b)

    def send_response(self, response: int) -> None:
        if response == ACK:
            self.start_tx()
            for b in self._response:
                self.send_byte(b)
            self.end_tx()

    def send_frame(self, data: bytes) -> None:
        if len(data) < self.timing.response_length:
            raise ValueError(
                f"frame of {len(data)} bytes is shorter than the "
                f"{self.timing.response_length}-byte response"
            )
        self.start_tx()
        for b in data:
            self.send_byte(b)
        self.prepare_response(data, len(data))
        self.end_tx()

    def start_tx(self) -> None:
        self.radio.begin_packet()

    def end_tx(self) -> None:
        self.radio.end_packet()