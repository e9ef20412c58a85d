"""
Bus Health Aggregation

Every poller reports a PollOutcome per cycle into one queue. The
aggregator folds them into a single bounded fail counter for the whole
bus and triggers shutdown when the counter reaches the threshold.
"""

import asyncio
from typing import Callable, Sequence

from fieldgate.common.config import Device, ThresholdPolicyName
from fieldgate.common.logging_setup import get_service_logger, log_escalation
from fieldgate.common.readings import PollOutcome

from .shutdown import ShutdownCoordinator

logger = get_service_logger("polling.health")

ThresholdPolicy = Callable[[Sequence[Device]], int]


def apply_outcome(counter: int, success: bool, threshold: int) -> int:
    """One step of the fail counter, clamped to [0, threshold]"""
    if success:
        return max(0, counter - 1)
    return min(threshold, counter + 1)


def _interval_ms(device: Device) -> int:
    return max(1, round(device.scan_interval * 1000))


def ratio_scaled_threshold(devices: Sequence[Device]) -> int:
    """2 * N * ceil(longest interval / shortest interval)"""
    if not devices:
        raise ValueError("threshold needs at least one device")
    intervals = [_interval_ms(d) for d in devices]
    ratio = -(-max(intervals) // min(intervals))
    return 2 * len(devices) * ratio


def flat_threshold(devices: Sequence[Device]) -> int:
    """2 * N, ignoring interval spread"""
    if not devices:
        raise ValueError("threshold needs at least one device")
    return 2 * len(devices)


THRESHOLD_POLICIES: dict[ThresholdPolicyName, ThresholdPolicy] = {
    ThresholdPolicyName.RATIO: ratio_scaled_threshold,
    ThresholdPolicyName.FLAT: flat_threshold,
}


def select_threshold_policy(name: ThresholdPolicyName | str) -> ThresholdPolicy:
    return THRESHOLD_POLICIES[ThresholdPolicyName(name)]


class HealthAggregator:
    """Single consumer of poll outcomes for one epoch"""

    def __init__(self, threshold: int, coordinator: ShutdownCoordinator):
        if threshold < 1:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.threshold = threshold
        self._coordinator = coordinator
        self._queue: asyncio.Queue[PollOutcome] = asyncio.Queue()
        self._counter = 0
        self._escalated = False
        self.processed = 0
        self.successes = 0

    @property
    def counter(self) -> int:
        return self._counter

    @property
    def escalated(self) -> bool:
        return self._escalated

    def submit(self, outcome: PollOutcome) -> None:
        """Called by pollers; never blocks"""
        self._queue.put_nowait(outcome)

    def process(self, outcome: PollOutcome) -> bool:
        """
        Apply one outcome to the counter.

        Returns:
            True exactly once, on the outcome that reaches the threshold
        """
        if self._escalated:
            return False
        self.processed += 1
        if outcome.success:
            self.successes += 1
        self._counter = apply_outcome(self._counter, outcome.success, self.threshold)
        if not outcome.success:
            logger.debug(
                f"{outcome.device_id}: failed cycle, fail_count={self._counter}/{self.threshold}",
                extra={"device_id": outcome.device_id},
            )
        if self._counter >= self.threshold:
            self._escalated = True
            return True
        return False

    async def run(self) -> None:
        """Consume outcomes until the threshold is reached or cancelled"""
        while True:
            outcome = await self._queue.get()
            if self.process(outcome):
                reason = f"{self._counter} failed poll cycles"
                log_escalation(logger, reason, self._counter, self.threshold)
                await self._coordinator.trigger(reason)
                return
