"""UTC timestamp helpers and the injectable clock type.

Every component that reasons about TTLs or sale recency takes a ``Clock`` so
tests can pin time without patching modules.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Ensure that ``value`` is timezone aware and converted to UTC.

    Raises:
        ValueError: If ``value`` is naive and lacks timezone information.
    """
    if value.tzinfo is None:
        raise ValueError("Datetime must include timezone information")
    return value.astimezone(UTC)


def age_in_days(value: datetime, *, as_of: datetime) -> float:
    """Return how many days before ``as_of`` the timestamp lies, never negative."""
    delta = ensure_utc(as_of) - ensure_utc(value)
    return max(delta.total_seconds() / 86400.0, 0.0)


__all__ = ["Clock", "age_in_days", "ensure_utc", "utc_now"]
