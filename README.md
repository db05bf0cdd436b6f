# busmesh

Building blocks for a multi-master bus network: interchangeable transport
strategies, packet switches and routers that join several buses, a LoRa
radio strategy and a TCP link for carrying packets between sites.

The package has no runtime dependencies.

## Install

```
pip install busmesh
```

To run the test suite:

```
pip install "busmesh[test]"
pytest
```

## Modules

### `busmesh.strategy`

- `Strategy`: the abstract interface of a transport: `back_off`, `begin`,
  `can_start`, `get_max_attempts`, `get_receive_time`, `handle_collision`,
  `receive_frame` (returns the frame as `bytes`, or `None`),
  `receive_response` (returns `ACK` or `FAIL`), `send_response` and
  `send_frame`.
- `StrategyLink(strategy)`: wraps a concrete strategy behind that interface.
- `AnyStrategy(link)`: delegates to a link that can be swapped with
  `set_link`; calling it with no link set raises `RuntimeError`.
- `ACK` (6) and `FAIL` (0x100) are the result codes used throughout.

### `busmesh.lora`

`ThroughLora(radio, timing)` is a strategy that drives a radio object you
supply (it must offer `parse_packet`, `available`, `read`, `write`,
`begin_packet`, `end_packet` and the configuration methods listed in the
class docstring). `LoraTiming` holds the delays, timeouts, attempt count,
back-off degree, response length and receive time. The acknowledgement for a
frame is its last `response_length` bytes sent back to the transmitter;
`send_frame` raises `ValueError` for frames shorter than that.

### `busmesh.switch`

`SimpleSwitch(buses, default_gateway)` attaches up to `MAX_BUSES` (5) buses
and forwards packets between them:

- shared-mode packets go to every bus whose bus id matches the receiver bus
  id; local-mode packets go to buses with the bus id 0.0.0.0;
- the default gateway, an index among the attached buses, also receives
  each routed packet, except when it is the bus the packet came from;
- a requested ACK is sent back to the sending bus once, even when a packet
  is delivered to several buses;
- NAT: a local-mode bus carrying a public bus id has the sender bus id of
  its outgoing shared packets set to that id, and incoming packets for that
  id have their receiver bus id set to 0.0.0.0.

`begin()` starts every bus, `loop()` receives from each bus and then lets
each one send what is pending, and `get_callback_bus()` tells which bus is
in a callback. When the class attribute `max_packets` is 0 the switch uses
`forward_blocking` and reports `CONNECTION_LOST` through its error hook on
failure. `PacketInfo` and `Endpoint` describe a packet's header fields.

### `busmesh.router`

- `Router(buses, default_gateway, table_size)`: a switch with a table of
  remote bus ids reachable through an attached bus. `add(bus_id,
  via_attached_bus)` returns `False` once the table (10 entries by default)
  is full; `routes` shows its contents.
- `DynamicRouter`: fills the table (100 entries by default) with the
  sender bus ids of packets it sees that it cannot already route.

### `busmesh.interactive`

`InteractiveSwitch`, `InteractiveRouter` and `InteractiveDynamicRouter` make
the switch itself a device. Packets addressed to its own id on the bus they
arrive on go to `receiver` instead of being forwarded (and are acknowledged
with the bus's `send_acknowledge` when requested); with `router=True` every
packet passing through is also handed to `receiver`. `error` receives bus
errors, `send_notification` is told about each packet forwarded onto a bus,
and `send_packet(payload, packet_info)` sends from the device itself.

### `busmesh.ethernet_wire`, `busmesh.ethernet_link`, `busmesh.ethernet_session`

- `TcpClient`, `TcpServer`: non-blocking TCP helpers; `encode_frame`,
  `read_bytes` and `read_until_header` handle the framing (magic header,
  sender id, big-endian length, content, magic footer).
- `EthernetLink(local_id)`: delivers framed packets to nodes registered with
  `add_node` (at most 10) and accepts packets after `start_listening`.
  Options: `keep_connection`, `request_ack` and
  `single_initiate_direction(True)`, where the non-listening side opens the
  sockets for both directions. `send` returns `ACK`, `FAIL` or `BUSY` (when
  incoming data must be read first).
- `SingleSocketLink(local_id)`: exchanges packets in both directions over
  one connection opened by the non-listening side; `poll_receive` lets that
  side collect packets waiting on the other.

## Examples

```python
from busmesh.router import Router

router = Router([bus_a, bus_b], default_gateway=1)
router.add(bytes([10, 0, 0, 1]), 0)  # bus 10.0.0.1 is reachable via bus 0
router.begin()
while True:
    router.loop()
```

```python
from busmesh.ethernet_link import EthernetLink

def on_packet(sender_id, payload, callback_object):
    print(sender_id, payload)

with EthernetLink(45) as link:
    link.add_node(44, bytes([127, 0, 0, 1]), 16001)
    link.set_receiver(on_packet, None)
    link.start_listening(16000)
    link.send(44, b"P")
    link.receive(1_000_000)
```

## What the package does not do

- It contains no bus object. Switches and routers work with buses you
  provide that follow the `Bus` protocol in `busmesh.switch` (`tx`,
  `config`, `strategy`, callbacks, `begin`, `receive`, `update`, `forward`,
  `forward_blocking`); packet header encoding, CRCs and retransmission are
  up to those buses.
- It contains no radio driver: `ThroughLora` only calls the radio object
  given to it.
- `EthernetLink` only moves raw packets with a sender id; it is not itself a
  `Strategy`.
- There is no command-line program.