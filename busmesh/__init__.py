"""Multi-master bus networking: strategies, switches, routers, LoRa and TCP transports."""

__version__ = "0.1.0"