"""
Bus Service - Modbus Communication

Responsibilities:
- Open and close the shared Modbus connection (TCP or RTU serial)
- Read and decode device registers
- Serialize access to the connection across pollers
"""

from .guard import TransportGuard
from .modbus_client import (
    BusReadResult,
    BusTransport,
    SerialBus,
    TcpBus,
    create_bus,
    decode_registers,
)

__all__ = [
    "BusReadResult",
    "BusTransport",
    "SerialBus",
    "TcpBus",
    "TransportGuard",
    "create_bus",
    "decode_registers",
]
