"""
Velocity Profiler
=================

Exponentially-weighted estimate of how often a monitored resource changes.

Changes pull the estimate up quickly (alpha 0.3); stable scans let it decay
slowly (alpha 0.1). The first scans are a warm-up during which the estimate
is left untouched.

Version: 0.1.0
"""

from dataclasses import dataclass
from datetime import UTC, datetime


WARMUP_SCANS = 3
NEUTRAL_FREQUENCY = 0.5

ALPHA_ON_CHANGE = 0.3
ALPHA_ON_STABLE = 0.1

MIN_FREQUENCY = 0.01
MAX_FREQUENCY = 0.99


@dataclass(frozen=True)
class VelocityUpdate:
    """Outcome of one velocity update."""

    new_frequency: float
    last_changed_at: datetime | None


def _clamp(value: float) -> float:
    return max(MIN_FREQUENCY, min(MAX_FREQUENCY, value))


def update_velocity(
    current_frequency: float,
    scan_count: int,
    content_changed: bool,
    now: datetime | None = None,
) -> VelocityUpdate:
    """
    Update the change frequency after a scan.

    Args:
        current_frequency: Current estimate in [0, 1]
        scan_count: Scans completed before this one
        content_changed: Whether this scan detected a change
        now: Timestamp recorded as ``last_changed_at`` on change

    Returns:
        VelocityUpdate with the new frequency and change timestamp
        (None when the content did not change)
    """
    last_changed_at = (now or datetime.now(UTC)) if content_changed else None

    if scan_count < WARMUP_SCANS:
        return VelocityUpdate(new_frequency=current_frequency, last_changed_at=last_changed_at)

    if content_changed:
        new_frequency = ALPHA_ON_CHANGE * 1.0 + (1 - ALPHA_ON_CHANGE) * current_frequency
    else:
        new_frequency = ALPHA_ON_STABLE * 0.0 + (1 - ALPHA_ON_STABLE) * current_frequency

    return VelocityUpdate(new_frequency=_clamp(new_frequency), last_changed_at=last_changed_at)


def describe_velocity(frequency: float) -> str:
    """Operator-facing label for a change frequency."""
    if frequency >= 0.8:
        return "volatile"
    if frequency >= 0.5:
        return "active"
    if frequency >= 0.2:
        return "moderate"
    return "static"
