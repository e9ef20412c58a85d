"""
Async Modbus Bus Transports

Wrapper around pymodbus for Modbus TCP and RTU serial communication.
Both variants expose the same connect / read / close capability so the
lifecycle manager never needs to know which one it holds.
"""

import asyncio
import math
import struct
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, runtime_checkable

from pymodbus.client import AsyncModbusSerialClient, AsyncModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException

from fieldgate.common.config import (
    ModbusTcpSettings,
    Register,
    RegisterDataType,
    RegisterKind,
    SerialSettings,
)
from fieldgate.common.exceptions import ConnectError, TransportError
from fieldgate.common.logging_setup import get_service_logger

logger = get_service_logger("bus.modbus")


@dataclass
class BusReadResult:
    """Result of reading one device's registers in a single exchange"""
    values: dict[int, float | int] = field(default_factory=dict)
    errors: dict[int, str] = field(default_factory=dict)
    timestamp: int = 0

    @property
    def all_failed(self) -> bool:
        return not self.values and bool(self.errors)


@runtime_checkable
class BusTransport(Protocol):
    """Capability interface for the shared field-bus connection.

    Implementations: TcpBus, SerialBus.
    """

    @property
    def endpoint(self) -> str:
        """Human-readable endpoint for logs"""
        ...

    async def connect(self) -> Any:
        """Open the connection; raises ConnectError"""
        ...

    async def read(
        self,
        connection: Any,
        unit_id: int,
        registers: Iterable[Register],
    ) -> BusReadResult:
        """Read registers from one unit; raises TransportError if the
        request cannot be issued at all"""
        ...

    async def close(self, connection: Any) -> None:
        """Close a connection returned by connect()"""
        ...


def decode_registers(
    registers: list[int],
    data_type: RegisterDataType,
) -> float | int | None:
    """Convert raw 16-bit words (high word first) to a typed value"""
    if len(registers) < data_type.register_count:
        return None

    try:
        if data_type == RegisterDataType.U16:
            return registers[0]

        elif data_type == RegisterDataType.I16:
            value = registers[0]
            if value >= 0x8000:
                value -= 0x10000
            return value

        elif data_type == RegisterDataType.U32:
            return (registers[0] << 16) | registers[1]

        elif data_type == RegisterDataType.I32:
            value = (registers[0] << 16) | registers[1]
            if value >= 0x80000000:
                value -= 0x100000000
            return value

        elif data_type == RegisterDataType.F32:
            packed = struct.pack(">HH", registers[0], registers[1])
            value = struct.unpack(">f", packed)[0]

        elif data_type == RegisterDataType.F64:
            packed = struct.pack(">HHHH", *registers[:4])
            value = struct.unpack(">d", packed)[0]

        else:
            return registers[0]

    except (struct.error, IndexError) as e:
        logger.warning(f"Error converting registers: {e}")
        return None

    # Line protocol cannot carry NaN or infinities
    if math.isnan(value) or math.isinf(value):
        return None
    return value


class _PymodbusBus:
    """Shared read path for the pymodbus-backed transports"""

    def _new_client(self) -> Any:
        raise NotImplementedError

    @property
    def endpoint(self) -> str:
        raise NotImplementedError

    async def connect(self) -> Any:
        client = self._new_client()
        try:
            await client.connect()
        except Exception as e:
            client.close()
            raise ConnectError(str(e), endpoint=self.endpoint) from e

        if not client.connected:
            client.close()
            raise ConnectError(
                f"could not connect to {self.endpoint}",
                endpoint=self.endpoint,
            )

        logger.info(f"Connected to Modbus bus at {self.endpoint}")
        return client

    async def close(self, connection: Any) -> None:
        connection.close()
        logger.debug(f"Disconnected from {self.endpoint}")

    async def read(
        self,
        connection: Any,
        unit_id: int,
        registers: Iterable[Register],
    ) -> BusReadResult:
        if connection is None or not connection.connected:
            raise TransportError(
                f"not connected to {self.endpoint}",
                endpoint=self.endpoint,
                unit_id=unit_id,
            )

        result = BusReadResult()
        connection_failed = False

        for register in registers:
            # Remaining registers cannot succeed once the link dropped
            if connection_failed:
                result.errors[register.address] = "Device not reachable (cascade)"
                continue

            try:
                if register.kind == RegisterKind.HOLDING:
                    response = await connection.read_holding_registers(
                        address=register.address,
                        count=register.count,
                        device_id=unit_id,
                    )
                else:
                    response = await connection.read_input_registers(
                        address=register.address,
                        count=register.count,
                        device_id=unit_id,
                    )
            except ConnectionException as e:
                result.errors[register.address] = f"Connection lost: {e}"
                connection_failed = True
                continue
            except ModbusException as e:
                result.errors[register.address] = f"Modbus exception: {e}"
                continue
            except asyncio.TimeoutError:
                result.errors[register.address] = "Read timeout"
                continue
            except Exception as e:
                result.errors[register.address] = f"Read error: {e}"
                continue

            if response.isError():
                result.errors[register.address] = f"Modbus error: {response}"
                continue

            value = decode_registers(list(response.registers), register.data_type)
            if value is None:
                result.errors[register.address] = (
                    f"Undecodable {register.data_type.value} value {list(response.registers)}"
                )
                continue

            if register.scale != 1.0:
                value = value * register.scale
            result.values[register.address] = value

        result.timestamp = int(time.time())
        return result


class TcpBus(_PymodbusBus):
    """Modbus TCP transport (also RTU-over-TCP gateways)"""

    def __init__(self, settings: ModbusTcpSettings):
        self.settings = settings

    @property
    def endpoint(self) -> str:
        return self.settings.endpoint

    def _new_client(self) -> AsyncModbusTcpClient:
        return AsyncModbusTcpClient(
            host=self.settings.hostname,
            port=self.settings.port,
            timeout=self.settings.timeout,
        )


class SerialBus(_PymodbusBus):
    """
    Modbus RTU transport for direct RS485/RS232 lines.

    Multiple units share one serial bus; exchanges are serialized by
    the TransportGuard.
    """

    def __init__(self, settings: SerialSettings):
        self.settings = settings

    @property
    def endpoint(self) -> str:
        return self.settings.endpoint

    def _new_client(self) -> AsyncModbusSerialClient:
        return AsyncModbusSerialClient(
            port=self.settings.port,
            baudrate=self.settings.baudrate,
            parity=self.settings.parity,
            stopbits=self.settings.stopbits,
            bytesize=self.settings.bytesize,
            timeout=self.settings.timeout,
        )


def create_bus(settings: ModbusTcpSettings | SerialSettings) -> BusTransport:
    """Pick the transport variant matching the configured bus"""
    if isinstance(settings, SerialSettings):
        return SerialBus(settings)
    return TcpBus(settings)
