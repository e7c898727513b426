"""Time-based regeneration of capped resources such as boss-attack energy.

The stored value only changes when it is spent; what is available at any
moment is derived from the stored amount and the last refill time.
"""

from datetime import datetime, UTC


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _elapsed_seconds(last_refill: datetime, now: datetime | None) -> float:
    if now is None:
        now = datetime.now(UTC)
    # Clock skew: a refill "in the future" counts as no time elapsed
    return max(0.0, (_aware(now) - _aware(last_refill)).total_seconds())


def compute_regenerated_amount(
    last_refill: datetime | None,
    current_amount: int,
    max_amount: int,
    regen_interval_minutes: float,
    now: datetime | None = None,
) -> int:
    """Calculate the amount available after regenerating since the last refill.

    Args:
        last_refill: When the stored amount was last written (None if unknown)
        current_amount: The stored amount at ``last_refill``
        max_amount: Regeneration cap
        regen_interval_minutes: Minutes needed to regenerate one point
        now: The moment to evaluate at (default: now)

    Returns:
        ``current_amount`` plus one point per whole interval elapsed, capped
        at ``max_amount`` and never below ``current_amount``

    Example:
        >>> refill = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        >>> compute_regenerated_amount(refill, 3, 25, 10, refill.replace(minute=35))
        6
    """
    if current_amount >= max_amount or last_refill is None:
        return current_amount
    if regen_interval_minutes <= 0:
        return current_amount

    intervals = int(_elapsed_seconds(last_refill, now) // (regen_interval_minutes * 60))
    return max(current_amount, min(max_amount, current_amount + intervals))


def seconds_until_next_point(
    last_refill: datetime | None,
    current_amount: int,
    max_amount: int,
    regen_interval_minutes: float,
    now: datetime | None = None,
) -> int | None:
    """Seconds until the next point regenerates, for countdown displays.

    Returns None when the resource is already full or has no refill baseline.
    """
    if last_refill is None or regen_interval_minutes <= 0:
        return None
    if compute_regenerated_amount(last_refill, current_amount, max_amount, regen_interval_minutes, now) >= max_amount:
        return None

    interval_seconds = regen_interval_minutes * 60
    into_interval = _elapsed_seconds(last_refill, now) % interval_seconds
    return int(interval_seconds - into_interval)
