"""
Polling Service - Per-Device Poll Loops

Responsibilities:
- Run one poller per device at its scan interval
- Aggregate poll outcomes into a single bus health counter
- Cancel and drain all pollers of a connection epoch
"""

from .epoch import Epoch
from .health import (
    HealthAggregator,
    ThresholdPolicy,
    apply_outcome,
    flat_threshold,
    ratio_scaled_threshold,
    select_threshold_policy,
)
from .poller import Poller
from .shutdown import CancellationToken, ShutdownCoordinator

__all__ = [
    "CancellationToken",
    "Epoch",
    "HealthAggregator",
    "Poller",
    "ShutdownCoordinator",
    "ThresholdPolicy",
    "apply_outcome",
    "flat_threshold",
    "ratio_scaled_threshold",
    "select_threshold_policy",
]
