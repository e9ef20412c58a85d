"""Tests for bus health aggregation and threshold policies."""

import asyncio
import random

import pytest

from fieldgate.common.config import ThresholdPolicyName
from fieldgate.common.readings import PollOutcome
from fieldgate.services.polling.health import (
    HealthAggregator,
    apply_outcome,
    flat_threshold,
    ratio_scaled_threshold,
    select_threshold_policy,
)
from fieldgate.services.polling.shutdown import ShutdownCoordinator

from fakes import make_device

OK = PollOutcome("gdt20/1", True)
FAIL = PollOutcome("gdt20/1", False)


def _devices(*intervals):
    return [make_device(unit_id=i + 1, scan_interval=s) for i, s in enumerate(intervals)]


class TestApplyOutcome:

    def test_failure_increments(self):
        assert apply_outcome(0, False, 6) == 1

    def test_success_decrements(self):
        assert apply_outcome(3, True, 6) == 2

    def test_success_floors_at_zero(self):
        assert apply_outcome(0, True, 6) == 0

    def test_failure_clamps_at_threshold(self):
        assert apply_outcome(6, False, 6) == 6

    def test_random_sequences_stay_in_bounds(self):
        rng = random.Random(1234)
        for _ in range(50):
            threshold = rng.randint(1, 20)
            counter = 0
            for _ in range(200):
                counter = apply_outcome(counter, rng.random() < 0.5, threshold)
                assert 0 <= counter <= threshold


class TestThresholdPolicies:

    @pytest.mark.parametrize("intervals, expected", [
        ((1.0, 1.0, 1.0), 6),
        ((1.0, 1.0, 4.0), 24),
        ((1.0, 2.0), 8),
        ((2.0,), 2),
        ((1.0, 1.5), 8),
        ((0.1, 0.3), 12),
        ((0.5, 0.5, 0.5, 0.5), 8),
    ])
    def test_ratio_scaled(self, intervals, expected):
        assert ratio_scaled_threshold(_devices(*intervals)) == expected

    def test_ratio_reduces_to_flat_for_equal_intervals(self):
        devices = _devices(3.0, 3.0, 3.0, 3.0, 3.0)
        assert ratio_scaled_threshold(devices) == flat_threshold(devices) == 10

    def test_flat_ignores_spread(self):
        assert flat_threshold(_devices(1.0, 1.0, 4.0)) == 6

    def test_no_devices(self):
        with pytest.raises(ValueError):
            ratio_scaled_threshold([])

    def test_select_by_name(self):
        assert select_threshold_policy("flat") is flat_threshold
        assert select_threshold_policy(ThresholdPolicyName.RATIO) is ratio_scaled_threshold

    def test_select_unknown(self):
        with pytest.raises(ValueError):
            select_threshold_policy("linear")


class TestHealthAggregator:

    def test_rejects_zero_threshold(self):
        with pytest.raises(ValueError):
            HealthAggregator(0, ShutdownCoordinator())

    def test_alternating_two_device_trajectory(self):
        """Devices at 1s and 2s, each alternating fail/success per call."""
        devices = _devices(1.0, 2.0)
        aggregator = HealthAggregator(ratio_scaled_threshold(devices), ShutdownCoordinator())
        assert aggregator.threshold == 8

        fast = [False, True] * 5
        slow = [False, True, False, True, False]
        stream = []
        for second in range(10):
            stream.append(fast[second])
            if second % 2 == 0:
                stream.append(slow[second // 2])

        trajectory = []
        for success in stream:
            assert aggregator.process(PollOutcome("dev", success)) is False
            trajectory.append(aggregator.counter)

        assert trajectory == [1, 2, 1, 2, 1, 0, 1, 2, 1, 2, 1, 0, 1, 2, 1]
        assert not aggregator.escalated

    def test_escalates_at_precomputed_index(self):
        """fail, fail, success repeated climbs by one per triple."""
        aggregator = HealthAggregator(8, ShutdownCoordinator())
        pattern = [FAIL, FAIL, OK] * 10

        fired_at = []
        for index, outcome in enumerate(pattern, start=1):
            if aggregator.process(outcome):
                fired_at.append(index)

        assert fired_at == [20]
        assert aggregator.counter == 8
        assert aggregator.processed == 20

    def test_escalation_fires_once(self):
        aggregator = HealthAggregator(3, ShutdownCoordinator())
        results = [aggregator.process(FAIL) for _ in range(10)]
        assert results.count(True) == 1
        assert results.index(True) == 2
        assert aggregator.counter == 3

    def test_partial_outcome_counts_as_success(self):
        aggregator = HealthAggregator(4, ShutdownCoordinator())
        aggregator.process(FAIL)
        aggregator.process(PollOutcome("gdt20/1", True, frozenset({12})))
        assert aggregator.counter == 0

    @pytest.mark.asyncio
    async def test_run_triggers_shutdown(self):
        coordinator = ShutdownCoordinator()
        aggregator = HealthAggregator(2, coordinator)
        task = asyncio.create_task(aggregator.run())

        aggregator.submit(FAIL)
        aggregator.submit(OK)
        aggregator.submit(FAIL)
        await asyncio.sleep(0)
        assert not coordinator.triggered

        aggregator.submit(FAIL)
        await asyncio.wait_for(task, timeout=1.0)

        assert coordinator.triggered
        assert coordinator.token.cancelled
        assert "2 failed poll cycles" in coordinator.reason

    @pytest.mark.asyncio
    async def test_run_ignores_successes(self):
        coordinator = ShutdownCoordinator()
        aggregator = HealthAggregator(2, coordinator)
        task = asyncio.create_task(aggregator.run())

        for _ in range(20):
            aggregator.submit(OK)
        await asyncio.sleep(0.01)

        assert not task.done()
        assert aggregator.counter == 0
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
