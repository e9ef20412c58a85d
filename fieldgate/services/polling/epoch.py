"""
Connection Epoch

Everything that lives for exactly one bus connection: the transport
guard, the cancellation token, the health aggregator and one poller task
per device. An epoch ends when its token is cancelled; it never revives.
"""

import asyncio
from contextlib import suppress
from typing import Any, Sequence

from fieldgate.common.config import Device
from fieldgate.common.logging_setup import get_service_logger
from fieldgate.services.bus import BusTransport, TransportGuard
from fieldgate.services.telemetry import TelemetrySink

from .health import HealthAggregator, ThresholdPolicy, ratio_scaled_threshold
from .poller import Poller
from .shutdown import ShutdownCoordinator

logger = get_service_logger("polling.epoch")


class Epoch:
    def __init__(
        self,
        number: int,
        devices: Sequence[Device],
        bus: BusTransport,
        connection: Any,
        sink: TelemetrySink,
        threshold_policy: ThresholdPolicy = ratio_scaled_threshold,
    ):
        self.number = number
        self.coordinator = ShutdownCoordinator()
        self.guard = TransportGuard(connection, bus.endpoint, self.coordinator.token)
        self.threshold = threshold_policy(devices)
        self.aggregator = HealthAggregator(self.threshold, self.coordinator)
        self.pollers = [
            Poller(device, self.guard, bus, sink, self.aggregator.submit, self.coordinator)
            for device in devices
        ]

    @property
    def fail_count(self) -> int:
        return self.aggregator.counter

    @property
    def healthy_cycles(self) -> int:
        return self.aggregator.successes

    def stop(self, reason: str = "gateway stopping") -> None:
        """Request the end of this epoch without waiting for it"""
        self.coordinator.cancel(reason)

    async def run(self) -> str:
        """
        Run all pollers until the epoch is cancelled, then tear down.

        Returns:
            The reason the epoch ended
        """
        logger.info(
            f"Epoch {self.number}: starting {len(self.pollers)} pollers "
            f"(threshold={self.threshold})"
        )
        aggregator_task = asyncio.create_task(
            self.aggregator.run(), name=f"health-{self.number}"
        )
        for poller in self.pollers:
            task = asyncio.create_task(
                poller.run(), name=f"poller-{self.number}-{poller.name}"
            )
            self.coordinator.register(poller.name, task)

        try:
            await self.coordinator.token.wait_cancelled()
        finally:
            self.coordinator.cancel("epoch cancelled")
            await self.coordinator.drain()
            aggregator_task.cancel()
            with suppress(asyncio.CancelledError):
                await aggregator_task
            await self.guard.close()

        logger.info(
            f"Epoch {self.number} ended: {self.coordinator.reason} "
            f"(fail_count={self.fail_count}, threshold={self.threshold})"
        )
        return self.coordinator.reason
