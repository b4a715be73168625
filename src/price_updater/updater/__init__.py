"""Incremental update pipeline: planning, fetching, orchestration."""

from price_updater.updater.fetcher import (
    MAX_RETRIES,
    FetchOutcome,
    FetchResult,
    RetryingFetcher,
)
from price_updater.updater.planner import LOOKBACK_DAYS, is_current, plan_range
from price_updater.updater.runner import RunSummary, Updater

__all__ = [
    "LOOKBACK_DAYS",
    "MAX_RETRIES",
    "FetchOutcome",
    "FetchResult",
    "RetryingFetcher",
    "RunSummary",
    "Updater",
    "is_current",
    "plan_range",
]
