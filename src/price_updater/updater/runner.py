"""Update run orchestration: planner → fetcher → frame → store."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from price_updater.core.exceptions import PriceUpdaterError, StorageError
from price_updater.core.models import Asset
from price_updater.prices.frame import FLUSH_THRESHOLD, PriceFrame
from price_updater.prices.store import PriceSink
from price_updater.updater.fetcher import FetchOutcome, RetryingFetcher
from price_updater.updater.planner import is_current, plan_range

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunSummary:
    """Counters for one update run."""

    assets: int = 0
    fetched: int = 0
    skipped: int = 0
    exhausted: int = 0
    failed: int = 0
    rows_fetched: int = 0
    rows_written: int = 0
    assets_marked: int = 0
    flushes: int = 0
    failed_flushes: int = 0


class Updater:
    """Drives one sequential pass over every tracked asset.

    Rows from all assets collect in one PriceFrame. The frame is flushed to
    the store whenever it reaches ``flush_threshold`` rows and once more
    after the last asset. A flush upserts the frame, then marks every asset
    fetched since the previous successful flush as updated today.

    Failed flushes are logged and retried implicitly by the next flush: the
    frame and pending ids are kept until their writes succeed.
    """

    def __init__(
        self,
        store: PriceSink,
        fetcher: RetryingFetcher,
        flush_threshold: int = FLUSH_THRESHOLD,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._threshold = flush_threshold
        self._clock = clock

        self._now: datetime | None = None
        self._assets: list[Asset] = []
        self._frame = PriceFrame()
        self._pending: set[int] = set()
        self._summary = RunSummary()

    @property
    def frame(self) -> PriceFrame:
        return self._frame

    @property
    def pending_ids(self) -> frozenset[int]:
        return frozenset(self._pending)

    async def run(self) -> RunSummary:
        """Refresh every asset once and return the run's counters.

        Raises:
            StorageError: only if the asset list cannot be loaded.
        """
        self._now = self._clock()
        self._assets = await self._store.list_assets()
        self._summary = RunSummary(assets=len(self._assets))
        logger.info("Updating %d assets", len(self._assets))

        while self._assets:
            asset = self._assets.pop()
            await self._process(asset)

        logger.info("Inserting remaining %d rows", len(self._frame))
        await self._flush()

        summary = self._summary
        self._assets.clear()
        self._frame.clear()
        self._pending.clear()
        self._now = None
        return summary

    async def _process(self, asset: Asset) -> None:
        if is_current(self._now, asset.last_updated):
            logger.info("%s is current (%s), skipping", asset.symbol, asset.last_updated)
            self._summary.skipped += 1
            return

        date_range = plan_range(self._now, asset.last_updated)
        try:
            result = await self._fetcher.fetch_into(asset, date_range, self._frame)
        except PriceUpdaterError as e:
            logger.warning("Error fetching prices for %s: %s", asset.symbol, e)
            self._summary.failed += 1
            return

        if result.outcome is FetchOutcome.EXHAUSTED:
            self._summary.exhausted += 1
            return

        self._summary.fetched += 1
        self._summary.rows_fetched += result.rows
        self._pending.add(asset.id)
        logger.info(
            "%s - %d rows [%d/%d]", asset.symbol, result.rows, len(self._frame), self._threshold
        )

        if len(self._frame) >= self._threshold:
            await self._flush()

    async def _flush(self) -> bool:
        """Write the frame, then mark pending assets. Returns True on success."""
        if len(self._frame):
            t0 = time.perf_counter()
            try:
                written = await self._store.upsert_prices(self._frame)
            except StorageError as e:
                logger.warning("Error inserting prices: %s", e)
                self._summary.failed_flushes += 1
                return False
            logger.info(
                "Inserted %d rows in %.0fms", written, (time.perf_counter() - t0) * 1000
            )
            self._summary.rows_written += written
            self._summary.flushes += 1
            self._frame.clear()

        if self._pending:
            try:
                marked = await self._store.mark_updated(
                    sorted(self._pending), self._now.date()
                )
            except StorageError as e:
                logger.warning("Error marking assets updated: %s", e)
                self._summary.failed_flushes += 1
                return False
            self._summary.assets_marked += marked
            self._pending.clear()

        return True
