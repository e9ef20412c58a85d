"""In-memory bus and sink doubles shared by the test modules."""

import asyncio
import time
from typing import Callable, Iterable

import httpx

from fieldgate.common.config import Device, Register, RegisterDataType, RegisterMap
from fieldgate.common.exceptions import ConnectError
from fieldgate.services.bus import BusReadResult


def make_registers(*addresses: int, data_type=RegisterDataType.F32) -> RegisterMap:
    return RegisterMap(
        Register(address=a, name=f"reg{a}", data_type=data_type) for a in addresses
    )


def make_device(
    unit_id: int = 1,
    group: str = "gdt20",
    scan_interval: float = 1.0,
    addresses: Iterable[int] = (0,),
    tags=(),
    register_map: RegisterMap | None = None,
) -> Device:
    return Device(
        unit_id=unit_id,
        group=group,
        scan_interval=scan_interval,
        register_map=register_map or make_registers(*addresses),
        tags=tuple(tags),
    )


def all_ok(unit_id: int, registers: list[Register]) -> BusReadResult:
    return BusReadResult(
        values={r.address: r.address + 0.5 for r in registers},
        timestamp=1700000000,
    )


def all_failed(unit_id: int, registers: list[Register]) -> BusReadResult:
    return BusReadResult(
        errors={r.address: "Modbus error: timeout" for r in registers},
        timestamp=1700000000,
    )


class FakeConnection:
    def __init__(self, number: int):
        self.number = number
        self.connected = True

    def close(self):
        self.connected = False


class FakeBus:
    """
    Scriptable BusTransport.

    respond(unit_id, registers) returns a BusReadResult or an exception
    instance to raise.
    """

    endpoint = "fake:502"

    def __init__(
        self,
        respond: Callable[[int, list[Register]], object] = all_ok,
        connect_failures: int = 0,
        read_delay: float = 0.0,
    ):
        self.respond = respond
        self.connect_failures = connect_failures
        self.read_delay = read_delay
        self.connect_attempts = 0
        self.connections: list[FakeConnection] = []
        self.closed: list[FakeConnection] = []
        self.reads: list[tuple[int, int, float]] = []
        self.started: list[float] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def connect(self) -> FakeConnection:
        self.connect_attempts += 1
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise ConnectError("connection refused", endpoint=self.endpoint)
        connection = FakeConnection(len(self.connections) + 1)
        self.connections.append(connection)
        return connection

    async def read(self, connection, unit_id, registers) -> BusReadResult:
        assert connection.connected, "read on a closed connection"
        self.started.append(time.monotonic())
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.read_delay:
                await asyncio.sleep(self.read_delay)
            else:
                await asyncio.sleep(0)
            self.reads.append((connection.number, unit_id, time.monotonic()))
            result = self.respond(unit_id, list(registers))
            if isinstance(result, BaseException):
                raise result
            return result
        finally:
            self.in_flight -= 1

    async def close(self, connection: FakeConnection) -> None:
        connection.close()
        self.closed.append(connection)


class FakeSink:
    def __init__(self, status_code: int = 204, error: Exception | None = None):
        self.status_code = status_code
        self.error = error
        self.bodies: list[str] = []
        self.closed = False

    async def send(self, body: str) -> httpx.Response:
        self.bodies.append(body)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text="")

    async def close(self) -> None:
        self.closed = True
