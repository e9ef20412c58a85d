"""
Per-cycle values exchanged between pollers, the encoder and the
health aggregator.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Reading:
    """One successfully read register value"""
    address: int
    value: float | int
    timestamp: int  # unix seconds


@dataclass(frozen=True)
class PollOutcome:
    """Result of one poll cycle, consumed once by the health aggregator"""
    device_id: str
    success: bool
    failed_addresses: frozenset[int] = frozenset()
