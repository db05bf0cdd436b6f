from collections import deque

import pytest

from busmesh.lora import LoraTiming, ThroughLora
from busmesh.strategy import ACK, FAIL


class FakeRadio:
    def __init__(self):
        self.incoming = deque()
        self.buffer = deque()
        self.sent = []
        self.current = None
        self.calls = []
        self.begin_result = True

    def queue(self, frame):
        self.incoming.append(bytes(frame))

    def parse_packet(self):
        if not self.incoming:
            return 0
        frame = self.incoming.popleft()
        self.buffer = deque(frame)
        return len(frame)

    def available(self):
        return len(self.buffer)

    def read(self):
        return self.buffer.popleft() if self.buffer else -1

    def begin_packet(self):
        self.current = bytearray()

    def write(self, b):
        self.current.append(b)

    def end_packet(self):
        self.sent.append(bytes(self.current))
        self.current = None

    def begin(self, frequency):
        self.calls.append(("begin", frequency))
        return self.begin_result

    def packet_rssi(self):
        return -71

    def packet_snr(self):
        return 9.5

    def enable_crc(self):
        self.calls.append(("enable_crc",))

    def disable_crc(self):
        self.calls.append(("disable_crc",))

    def set_tx_power(self, *args):
        self.calls.append(("set_tx_power",) + args)

    def set_sync_word(self, word):
        self.calls.append(("set_sync_word", word))

    def idle(self):
        self.calls.append(("idle",))

    def sleep(self):
        self.calls.append(("sleep",))

    def random(self):
        return 0x1AB


@pytest.fixture
def radio():
    return FakeRadio()


@pytest.fixture
def lora(radio):
    return ThroughLora(radio, LoraTiming(response_timeout=2000))


FRAME = bytes(range(10, 22))


def test_default_timing_constants():
    timing = LoraTiming()
    assert timing.response_length == 5
    assert timing.max_attempts == 5
    assert timing.response_timeout == 100000
    assert timing.initial_delay == 1000
    assert timing.collision_delay == 64


def test_attempt_limits_and_receive_time(radio):
    strategy = ThroughLora(radio)
    assert strategy.get_max_attempts() == LoraTiming().max_attempts
    assert strategy.get_receive_time() == 0


def test_back_off_degree_zero_is_identity(radio):
    strategy = ThroughLora(radio, LoraTiming(back_off_degree=0))
    assert strategy.back_off(7) == 7


def test_back_off_edges_and_growth(radio):
    strategy = ThroughLora(radio)
    assert strategy.back_off(0) == 0
    assert strategy.back_off(1) == 1
    assert strategy.back_off(3) > strategy.back_off(2)
    assert 0 <= strategy.back_off(255) < 2**32


def test_send_frame_writes_whole_frame(lora, radio):
    lora.send_frame(FRAME)
    assert radio.sent == [FRAME]


def test_ack_for_sent_frame_is_accepted(lora, radio):
    lora.send_frame(FRAME)
    radio.queue(FRAME[-5:])
    assert lora.receive_response() == ACK


def test_wrong_ack_is_rejected(lora, radio):
    lora.send_frame(FRAME)
    radio.queue(FRAME[:5])
    assert lora.receive_response() == FAIL


def test_response_timeout(lora, radio):
    lora.send_frame(FRAME)
    assert lora.receive_response() == FAIL


def test_receive_frame_and_acknowledge(lora, radio):
    radio.queue(FRAME)
    assert lora.receive_frame(100) == FRAME
    lora.send_response(ACK)
    assert radio.sent == [FRAME[-5:]]


def test_round_trip_between_two_radios():
    tx_radio, rx_radio = FakeRadio(), FakeRadio()
    sender = ThroughLora(tx_radio, LoraTiming(response_timeout=2000))
    receiver = ThroughLora(rx_radio)
    sender.send_frame(FRAME)
    rx_radio.queue(tx_radio.sent[0])
    assert receiver.receive_frame(255) == FRAME
    receiver.send_response(ACK)
    tx_radio.queue(rx_radio.sent[0])
    assert sender.receive_response() == ACK


def test_non_ack_response_sends_nothing(lora, radio):
    radio.queue(FRAME)
    assert lora.receive_frame(100) == FRAME
    lora.send_response(FAIL)
    assert radio.sent == []
    lora.send_response(ACK)
    assert radio.sent == [FRAME[-5:]]


def test_short_frame_is_filtered(lora, radio):
    radio.queue(FRAME[:5])
    assert lora.receive_frame(100) is None


def test_frame_longer_than_max_is_filtered(lora, radio):
    radio.queue(FRAME)
    assert lora.receive_frame(len(FRAME) - 1) is None


def test_no_frame_returns_none(lora):
    assert lora.receive_frame(100) is None


def test_send_short_frame_raises_without_sending(lora, radio):
    with pytest.raises(ValueError):
        lora.send_frame(b"\x01\x02")
    assert radio.sent == []


def test_prepare_response_bounds(lora):
    with pytest.raises(ValueError):
        lora.prepare_response(b"\x01\x02\x03", 3)
    with pytest.raises(ValueError):
        lora.prepare_response(FRAME, len(FRAME) + 1)


def test_prepare_response_sets_ack(lora, radio):
    lora.prepare_response(FRAME, 8)
    lora.send_response(ACK)
    assert radio.sent == [FRAME[3:8]]


def test_can_start_depends_on_pending_packet(lora, radio):
    assert lora.can_start() is True
    radio.queue(FRAME)
    assert lora.can_start() is False


def test_begin_returns_true(radio):
    strategy = ThroughLora(radio, LoraTiming(initial_delay=1))
    assert strategy.begin(0) is True


def test_set_frequency_returns_radio_result(lora, radio):
    assert lora.set_frequency(868000000) is True
    radio.begin_result = False
    assert lora.set_frequency(433000000) is False
    assert radio.calls == [("begin", 868000000), ("begin", 433000000)]


def test_crc_and_power_settings_reach_radio(lora, radio):
    lora.set_crc(True)
    lora.set_crc(False)
    lora.set_tx_power(17)
    lora.set_tx_power(20, 1)
    assert lora.set_frequency(915000000) is True
    assert radio.calls == [
        ("enable_crc",),
        ("disable_crc",),
        ("set_tx_power", 17),
        ("set_tx_power", 20, 1),
        ("begin", 915000000),
    ]


def test_passthroughs(lora, radio):
    assert lora.packet_rssi() == -71
    assert lora.packet_snr() == 9.5
    assert lora.get_random() == 0xAB
    lora.set_sync_word(0x34)
    lora.idle()
    lora.sleep()
    assert radio.calls == [("set_sync_word", 0x34), ("idle",), ("sleep",)]