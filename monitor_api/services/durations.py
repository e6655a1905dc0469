"""Duration rounding, formatting and availability helpers shared by reports and routes."""

import math

SECONDS_PER_DAY = 86400


def ceil_minutes(seconds: int) -> int:
    """Whole minutes, rounding any leftover second up to a full minute."""
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 60)


def format_minutes(total_minutes: int) -> str:
    """Render minutes as ``"45m"`` or ``"2h 5m"``."""
    if total_minutes <= 0:
        return "0m"
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_duration(seconds: int) -> str:
    """Plain formatter: truncates leftover seconds (125s -> "2m")."""
    return format_minutes(max(0, seconds) // 60)


def format_duration_rounded_up(seconds: int) -> str:
    """Round-up formatter: 1-59 leftover seconds count as a minute (125s -> "3m")."""
    return format_minutes(ceil_minutes(seconds))


def availability_percent(total_downtime_seconds: int, period_days: int, services_count: int) -> float:
    """Availability % over the period, assuming every service was monitored the whole time.

    Returns 100.0 when there is no downtime (or nothing to measure).
    """
    if total_downtime_seconds <= 0 or services_count <= 0 or period_days <= 0:
        return 100.0
    total_seconds = period_days * SECONDS_PER_DAY * services_count
    # any downtime at all keeps the figure below 100 after rounding
    return min(round((1 - total_downtime_seconds / total_seconds) * 100, 2), 99.99)
