"""Watermark-driven fetch window planning."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from price_updater.core.models import DateRange

# Re-fetch overlap behind the watermark; absorbs late provider corrections
LOOKBACK_DAYS = 30


def is_current(now: datetime, last_updated: date | None) -> bool:
    """True when the watermark already equals today's date."""
    return last_updated is not None and last_updated == now.date()


def plan_range(now: datetime, last_updated: date | None) -> DateRange | None:
    """Compute the window to fetch for an asset.

    Returns None when the asset was never updated (fetch the provider's
    default history) or when it is already current. Otherwise the window
    runs from midnight UTC, ``LOOKBACK_DAYS`` before the watermark, to ``now``.
    """
    if last_updated is None or is_current(now, last_updated):
        return None

    try:
        start_day = last_updated - timedelta(days=LOOKBACK_DAYS)
    except OverflowError:
        start_day = date.min

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    start = datetime.combine(start_day, time(0), tzinfo=timezone.utc)
    return DateRange(start=start, end=max(now, start))
