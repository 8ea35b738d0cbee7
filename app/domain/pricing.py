"""Rental duration and pricing rules.

- Duration is billed in whole days: elapsed time rounded up to the next
  24h boundary, never less than one day.
- Total amount is days x vehicle day rate, in paise.
"""

import math
from datetime import date, datetime, time

SECONDS_PER_DAY = 24 * 60 * 60


def combine_window(day: date, clock: str) -> datetime:
    """Combine a calendar date with an ``HH:MM`` clock string."""
    return datetime.combine(day, time.fromisoformat(clock))


def rental_days(pickup_at: datetime, dropoff_at: datetime) -> int:
    """Billable days between pickup and dropoff.

    Raises:
        ValueError: If dropoff is not after pickup
    """
    elapsed = (dropoff_at - pickup_at).total_seconds()
    if elapsed <= 0:
        raise ValueError("Dropoff must be after pickup")
    return max(1, math.ceil(elapsed / SECONDS_PER_DAY))


def rental_total(days: int, price_per_day: int) -> int:
    """Total rental amount in paise."""
    if days < 1:
        raise ValueError(f"days must be at least 1, got {days}")
    if price_per_day < 0:
        raise ValueError(f"price_per_day cannot be negative, got {price_per_day}")
    return days * price_per_day


def duration_label(days: int) -> str:
    return "1 day" if days == 1 else f"{days} days"
