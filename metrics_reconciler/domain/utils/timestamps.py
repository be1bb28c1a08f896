"""
Timestamp parsing and conversion utilities.

Upstream services and the push channel disagree on timestamp encodings
(ISO8601 with or without a trailing ``Z``, naive strings, epoch seconds or
milliseconds). Everything inside the engine is a timezone-aware UTC
``datetime`` so that ordering comparisons never mix naive and aware values.
"""

import logging
from datetime import datetime, time, timezone
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Values at or above this are epoch milliseconds (September 2001 in seconds)
_MILLIS_THRESHOLD = 10_000_000_000


def parse_timestamp(
    value: Optional[Union[str, int, float, datetime]],
) -> Optional[datetime]:
    """
    Parse a timestamp from various formats into an aware UTC datetime.

    Supports:
    - ``datetime`` instances (naive values are assumed to be UTC)
    - ISO8601 strings (with or without 'Z' suffix)
    - Unix timestamps in seconds (< 10000000000)
    - Unix timestamps in milliseconds (>= 10000000000)

    Parameters
    ----------
    value : str, int, float, datetime, or None
        The timestamp to parse

    Returns
    -------
    datetime or None
        Parsed datetime in UTC, or None if parsing fails

    Examples
    --------
    >>> parse_timestamp("2025-10-15T12:00:00Z")
    datetime.datetime(2025, 10, 15, 12, 0, tzinfo=datetime.timezone.utc)
    >>> parse_timestamp(1697371200000)
    datetime.datetime(2023, 10, 15, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    # bool is an int subclass; never a timestamp
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return _parse_iso8601(value)
    if isinstance(value, (int, float)):
        return _parse_unix_timestamp(value)
    return None


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_iso8601(value: str) -> Optional[datetime]:
    value = value.strip()
    if not value:
        return None
    try:
        if value.endswith(("Z", "z")):
            value = value[:-1] + "+00:00"
        return _as_utc(datetime.fromisoformat(value))
    except ValueError:
        logger.warning(
            "timestamps.parse_iso8601_failed",
            extra={"value": value, "error": "invalid format"},
        )
        return None


def _parse_unix_timestamp(value: Union[int, float]) -> Optional[datetime]:
    try:
        if value >= _MILLIS_THRESHOLD:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning(
            "timestamps.parse_unix_failed",
            extra={"value": value, "error": "invalid timestamp"},
        )
        return None


def format_timestamp(dt: datetime) -> str:
    """Render an aware datetime as ISO8601 UTC with millisecond precision."""
    utc = _as_utc(dt)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def day_bounds(from_date: datetime, to_date: datetime) -> Tuple[datetime, datetime]:
    """
    Widen a date range to whole UTC days.

    The calendar date of each bound is kept as selected; the start snaps to
    00:00:00.000 and the end to 23:59:59.999 so that a single-day selection
    still covers the full day of daily aggregates.
    """
    start = datetime.combine(from_date.date(), time.min, tzinfo=timezone.utc)
    end = datetime.combine(
        to_date.date(), time(23, 59, 59, 999000), tzinfo=timezone.utc
    )
    return start, end
