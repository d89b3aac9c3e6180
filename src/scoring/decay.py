"""
Temporal decay for interaction events.

    weight = exp(-ln(2) * elapsed_seconds / (half_life_days * 86400))

1.0 at zero elapsed time, 0.5 after one half-life, strictly positive for
any finite input. Events timestamped in the future count as zero elapsed.
"""

import math
from datetime import datetime

from core.utils import as_utc
from matching.errors import InvalidRequestError

SECONDS_PER_DAY = 86400.0

# Smallest positive float; keeps very old events from decaying to exactly 0
_MIN_WEIGHT = math.ulp(0.0)


def decay_for_elapsed(elapsed_seconds: float, half_life_days: float) -> float:
    """Decay weight for a raw elapsed duration in seconds."""
    if half_life_days is None or half_life_days <= 0 or not math.isfinite(half_life_days):
        raise InvalidRequestError(f"half_life_days must be > 0, got {half_life_days}")
    elapsed = max(0.0, float(elapsed_seconds))
    weight = math.exp(-math.log(2) * elapsed / (half_life_days * SECONDS_PER_DAY))
    return max(weight, _MIN_WEIGHT)


def decay(event_time: datetime, half_life_days: float, now: datetime) -> float:
    """
    Temporal weight in (0, 1] for an event at ``event_time``.

    Raises:
        InvalidRequestError: if ``half_life_days <= 0``
    """
    elapsed = (as_utc(now) - as_utc(event_time)).total_seconds()
    return decay_for_elapsed(elapsed, half_life_days)
