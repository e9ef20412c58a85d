"""
Fieldgate Connection Supervisor

Owns the connect/reconnect-forever loop:
- Connects to the field bus, retrying on failure
- Runs one polling epoch per successful connection
- Tears the epoch down on a fatal signal and reconnects
- Reports a status snapshot for the status server
"""

import asyncio
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from fieldgate.common.config import Device, ReconnectSettings
from fieldgate.common.exceptions import ConnectError
from fieldgate.common.logging_setup import get_service_logger
from fieldgate.services.bus import BusTransport
from fieldgate.services.polling import Epoch, ThresholdPolicy, ratio_scaled_threshold
from fieldgate.services.telemetry import TelemetrySink

logger = get_service_logger("supervisor")


class RetryDelay:
    """
    Delay between connection attempts.

    Fixed when max_delay <= delay. Otherwise doubles per attempt up to
    max_delay, with jitter over the upper half of each step.
    """

    def __init__(
        self,
        delay: float,
        max_delay: float | None = None,
        rng: Callable[[], float] = random.random,
    ):
        self.delay = delay
        self.max_delay = delay if max_delay is None else max_delay
        self._rng = rng
        self._attempt = 0

    @property
    def exponential(self) -> bool:
        return self.max_delay > self.delay

    def next(self) -> float:
        if not self.exponential:
            return self.delay
        step = min(self.max_delay, self.delay * 2 ** self._attempt)
        self._attempt += 1
        return step / 2 + self._rng() * step / 2

    def reset(self) -> None:
        self._attempt = 0


class ConnectionLifecycleManager:
    """
    Runs polling epochs back to back for as long as the gateway lives.

    Never gives up on the bus: connect failures are retried forever and a
    fatal epoch is followed, after the retry delay, by a fresh connection
    with a fresh counter. Backoff only resets once an epoch has seen a
    healthy cycle.
    """

    def __init__(
        self,
        bus: BusTransport,
        sink: TelemetrySink,
        devices: Sequence[Device],
        reconnect: ReconnectSettings | None = None,
        threshold_policy: ThresholdPolicy = ratio_scaled_threshold,
    ):
        if not devices:
            raise ValueError("at least one device is required")
        reconnect = reconnect or ReconnectSettings()
        self._bus = bus
        self._sink = sink
        self._devices = tuple(devices)
        self._threshold_policy = threshold_policy
        self._retry = RetryDelay(reconnect.delay, reconnect.max_delay)
        self._stop_event = asyncio.Event()
        self._epoch: Epoch | None = None
        self._start_time = datetime.now(timezone.utc)

        self.epoch_count = 0
        self.connect_failures = 0
        self.last_fatal_reason: str | None = None
        self.last_connected_at: float | None = None

    @property
    def connected(self) -> bool:
        return self._epoch is not None

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def epoch(self) -> Epoch | None:
        return self._epoch

    def stop(self) -> None:
        """Stop the gateway; safe to call from a signal handler"""
        if self._stop_event.is_set():
            return
        logger.info("Received shutdown signal")
        self._stop_event.set()
        if self._epoch is not None:
            self._epoch.stop("gateway stopping")

    async def run_forever(self) -> None:
        logger.info(
            f"Starting gateway: {len(self._devices)} devices on {self._bus.endpoint}"
        )

        while not self._stop_event.is_set():
            try:
                connection = await self._bus.connect()
            except ConnectError as e:
                self.connect_failures += 1
                delay = self._retry.next()
                logger.warning(
                    f"{e} - retrying in {delay:.1f}s",
                    extra={"endpoint": self._bus.endpoint, "retry_delay": delay},
                )
                await self._sleep(delay)
                continue

            epoch = await self._run_epoch(connection)
            if epoch.healthy_cycles:
                self._retry.reset()
            if self._stop_event.is_set():
                break

            delay = self._retry.next()
            logger.warning(
                f"Epoch {epoch.number} ended: {self.last_fatal_reason} - "
                f"reconnecting in {delay:.1f}s",
                extra={"endpoint": self._bus.endpoint, "retry_delay": delay},
            )
            await self._sleep(delay)

        logger.info("Gateway stopped")

    async def _run_epoch(self, connection: Any) -> Epoch:
        self.epoch_count += 1
        self.last_connected_at = time.monotonic()
        epoch = Epoch(
            self.epoch_count,
            self._devices,
            self._bus,
            connection,
            self._sink,
            self._threshold_policy,
        )
        self._epoch = epoch
        if self._stop_event.is_set():
            epoch.stop("gateway stopping")

        try:
            reason = await epoch.run()
        finally:
            self._epoch = None
            await self._close(connection)

        if not self._stop_event.is_set():
            self.last_fatal_reason = reason
        return epoch

    async def _close(self, connection: Any) -> None:
        try:
            await self._bus.close(connection)
        except Exception as e:
            logger.warning(f"Error closing connection to {self._bus.endpoint}: {e}")

    async def _sleep(self, delay: float) -> None:
        """Sleep that returns early when stop() is called"""
        try:
            await asyncio.wait_for(self._stop_event.wait(), delay)
        except asyncio.TimeoutError:
            pass

    def get_status(self) -> dict[str, Any]:
        """Current lifecycle snapshot"""
        epoch = self._epoch
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        return {
            "connected": epoch is not None,
            "endpoint": self._bus.endpoint,
            "epoch": self.epoch_count,
            "reconnects": max(0, self.epoch_count - 1),
            "connect_failures": self.connect_failures,
            "last_fatal_reason": self.last_fatal_reason,
            "fail_count": epoch.fail_count if epoch else None,
            "threshold": epoch.threshold if epoch else None,
            "devices": len(self._devices),
            "stopping": self._stop_event.is_set(),
            "uptime": int(uptime),
        }
