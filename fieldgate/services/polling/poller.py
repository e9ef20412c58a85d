"""
Device Poller

One poller per configured device. Each cycle it reads the device's whole
register map through the transport guard, forwards the successful values
as one line-protocol payload and reports a PollOutcome to the health
aggregator.

Classification of a cycle:
- request could not be issued at all      -> failure
- every register of a multi-register group -> failure, and the epoch is
  stopped straight away
- some registers failed                    -> success, failures logged
- single-register device failed            -> failure (counted only)

Sink problems are logged and never counted against the bus.
"""

import asyncio
import time
from typing import Callable

from fieldgate.common.config import Device
from fieldgate.common.exceptions import SinkError, TransportError
from fieldgate.common.logging_setup import (
    get_service_logger,
    log_escalation,
    log_register_read,
)
from fieldgate.common.readings import PollOutcome, Reading
from fieldgate.services.bus import BusReadResult, BusTransport, TransportGuard
from fieldgate.services.telemetry import TelemetrySink, encode_readings

from .shutdown import ShutdownCoordinator

logger = get_service_logger("polling.poller")


class Poller:
    """Periodic read/forward/report loop for one device"""

    def __init__(
        self,
        device: Device,
        guard: TransportGuard,
        bus: BusTransport,
        sink: TelemetrySink,
        report: Callable[[PollOutcome], None],
        coordinator: ShutdownCoordinator,
    ):
        self.device = device
        self._guard = guard
        self._bus = bus
        self._sink = sink
        self._report = report
        self._coordinator = coordinator
        self._token = coordinator.token
        self.cycles = 0

    @property
    def name(self) -> str:
        return self.device.name

    async def run(self) -> None:
        """Poll until the epoch is cancelled"""
        loop = asyncio.get_running_loop()
        logger.info(
            f"Polling {self.name}: {len(self.device.register_map)} registers "
            f"every {self.device.scan_interval}s",
            extra={"device": self.name},
        )

        while not self._token.cancelled:
            started = loop.time()
            await self.poll_once()
            if self._token.cancelled:
                break
            remaining = self.device.scan_interval - (loop.time() - started)
            if await self._token.wait(max(0.0, remaining)):
                break

        logger.debug(f"Poller {self.name} stopped after {self.cycles} cycles")

    async def poll_once(self) -> PollOutcome | None:
        """
        Run one read/forward/report cycle.

        Returns:
            The reported outcome, or None if the epoch was torn down
            before the bus could be read
        """
        registers = list(self.device.register_map)
        try:
            async with self._guard.exclusive() as connection:
                result = await self._bus.read(connection, self.device.unit_id, registers)
        except TransportError as e:
            if self._token.cancelled:
                return None
            logger.warning(f"{self.name}: {e}", extra={"device": self.name})
            result = BusReadResult(errors={r.address: str(e) for r in registers})

        self.cycles += 1
        timestamp = result.timestamp or int(time.time())

        readings = []
        for register in registers:
            if register.address in result.values:
                value = result.values[register.address]
                log_register_read(logger, self.name, register.name, value)
                readings.append(Reading(register.address, value, timestamp))
            elif register.address in result.errors:
                log_register_read(
                    logger,
                    self.name,
                    register.name,
                    None,
                    success=False,
                    error=result.errors[register.address],
                )

        if readings:
            await self._forward(readings)

        outcome = PollOutcome(
            device_id=self.name,
            success=bool(readings),
            failed_addresses=frozenset(result.errors),
        )
        self._report(outcome)

        if self.device.is_group and result.all_failed:
            reason = f"all {len(registers)} registers of {self.name} failed"
            log_escalation(logger, reason)
            self._coordinator.cancel(reason)

        return outcome

    async def _forward(self, readings: list[Reading]) -> None:
        body = encode_readings(self.device, readings)
        try:
            response = await self._sink.send(body)
        except SinkError as e:
            logger.warning(f"InfluxDB write failed for {self.name}: {e}")
            return
        if not response.is_success:
            logger.warning(
                f"InfluxDB rejected {len(readings)} lines from {self.name}: "
                f"HTTP {response.status_code} {response.text[:200]}"
            )
