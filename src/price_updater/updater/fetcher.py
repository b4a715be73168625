"""Per-asset fetch loop with jittered pacing and backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from price_updater.core.exceptions import ProviderError
from price_updater.core.models import Asset, DateRange
from price_updater.prices.frame import PriceFrame
from price_updater.providers.base import PriceSource

logger = logging.getLogger(__name__)

MAX_RETRIES = 4
JITTER_MS = 1000

Sleep = Callable[[float], Awaitable[None]]


class FetchOutcome(StrEnum):
    FETCHED = "fetched"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class FetchResult:
    outcome: FetchOutcome
    rows: int
    attempts: int

    @property
    def fetched(self) -> bool:
        return self.outcome is FetchOutcome.FETCHED


class RetryingFetcher:
    """Fetch one asset at a time from a PriceSource, retrying provider errors.

    Each attempt runs the fetch alongside a pacing sleep of
    ``pacing_seconds`` plus up to one second of jitter and waits for both.
    The sleep is a floor on attempt duration, not a timeout: the fetch is
    always awaited to completion.

    After a ``ProviderError`` the loop sleeps ``2 ** max_retries`` seconds.
    The backoff is the same for every attempt.

    Parameters
    ----------
    source : PriceSource
        Where bars come from. Each call presents a fresh client identity.
    pacing_seconds : float
        Base pacing floor per attempt.
    max_retries : int
        Attempts per asset before giving up for this run.
    sleep : callable
        Awaitable sleep, ``asyncio.sleep`` by default.
    rng : random.Random | None
        Jitter source. Module-level random if None.
    """

    def __init__(
        self,
        source: PriceSource,
        pacing_seconds: float = 2.0,
        max_retries: int = MAX_RETRIES,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._source = source
        self._pacing = pacing_seconds
        self._max_retries = max_retries
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def backoff_seconds(self) -> int:
        return 2**self._max_retries

    def _pause(self) -> float:
        jitter_ms = self._rng.randrange(JITTER_MS)
        return self._pacing + jitter_ms / 1000

    async def fetch_into(
        self,
        asset: Asset,
        date_range: DateRange | None,
        frame: PriceFrame,
    ) -> FetchResult:
        """Fetch ``asset`` and append its rows to ``frame``.

        Returns FETCHED on the first successful attempt, EXHAUSTED when all
        attempts raised ProviderError (nothing is appended in that case).

        Raises:
            DecodeError: the response could not be turned into rows.
            ParamFormatError: the request could not be built.
        """
        for attempt in range(1, self._max_retries + 1):
            outcome, _ = await asyncio.gather(
                self._source.fetch(asset.symbol, date_range),
                self._sleep(self._pause()),
                return_exceptions=True,
            )

            if isinstance(outcome, ProviderError):
                await self._sleep(self.backoff_seconds)
                logger.warning(
                    "Retry %d/%d for %s after %s",
                    attempt,
                    self._max_retries,
                    asset.symbol,
                    outcome,
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            rows = outcome.extract_time_series(asset.id)
            frame.extend(rows)
            return FetchResult(FetchOutcome.FETCHED, rows=len(rows), attempts=attempt)

        logger.warning(
            "Giving up on %s after %d attempts", asset.symbol, self._max_retries
        )
        return FetchResult(FetchOutcome.EXHAUSTED, rows=0, attempts=self._max_retries)
