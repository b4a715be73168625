"""Tests for the update run orchestrator."""

from __future__ import annotations

import logging
from datetime import date

import pytest

from price_updater.core.exceptions import DecodeError, ProviderError
from price_updater.core.models import Asset
from price_updater.providers.yahoo import YahooChart
from price_updater.updater.fetcher import MAX_RETRIES, RetryingFetcher
from price_updater.updater.runner import Updater
from tests.fakes import FakeSource, FakeStore, no_sleep

TODAY = date(2024, 6, 15)


def _updater(store, source, now, threshold=10_000) -> Updater:
    fetcher = RetryingFetcher(source, pacing_seconds=0.0, sleep=no_sleep)
    return Updater(store, fetcher, flush_threshold=threshold, clock=lambda: now)


def _stale(n: int, start_id: int = 1) -> list[Asset]:
    return [
        Asset(id=i, symbol=f"SYM{i}", last_updated=date(2024, 5, 1))
        for i in range(start_id, start_id + n)
    ]


class TestUpdaterRun:
    async def test_fetches_stale_and_new_skips_current(self, sample_assets, now):
        store = FakeStore(sample_assets)
        source = FakeSource({"AAPL": [3], "MSFT": [5]})

        summary = await _updater(store, source, now).run()

        assert summary.assets == 3
        assert summary.fetched == 2
        assert summary.skipped == 1
        assert summary.rows_fetched == 8
        assert summary.rows_written == 8
        assert summary.assets_marked == 2
        assert sorted(sym for sym, _ in source.calls) == ["AAPL", "MSFT"]
        assert store.assets[1].last_updated == TODAY
        assert store.assets[2].last_updated == TODAY

    async def test_range_depends_on_watermark(self, sample_assets, now):
        store = FakeStore(sample_assets)
        source = FakeSource()

        await _updater(store, source, now).run()

        ranges = dict(source.calls)
        assert ranges["MSFT"] is None
        assert ranges["AAPL"].start.date() == date(2024, 4, 1)
        assert ranges["AAPL"].end == now

    async def test_exhausted_asset_never_marked(self, now):
        assets = _stale(3)
        store = FakeStore(assets)
        source = FakeSource({"SYM2": [ProviderError("down")] * MAX_RETRIES})

        summary = await _updater(store, source, now).run()

        assert summary.exhausted == 1
        assert summary.fetched == 2
        assert 2 not in store.marked_ids()
        assert store.assets[2].last_updated == date(2024, 5, 1)

    async def test_decode_failure_counted_and_not_marked(self, now):
        store = FakeStore(_stale(2))
        source = FakeSource({"SYM1": [DecodeError("garbage")] * MAX_RETRIES})

        summary = await _updater(store, source, now).run()

        assert summary.exhausted == 1
        assert store.marked_ids() == [2]

    async def test_malformed_chart_keeps_earlier_rows(self, now):
        class ChartSource:
            name = "charts"

            def __init__(self, charts):
                self.charts = charts

            async def fetch(self, symbol, date_range):
                return self.charts[symbol]

        good = {
            "meta": {"gmtoffset": 0},
            "timestamp": [1718371800],
            "indicators": {
                "quote": [
                    {"open": [1.0], "high": [2.0], "low": [0.5], "close": [1.5], "volume": [10]}
                ]
            },
        }
        bad = {"timestamp": [1718371800], "indicators": {"quote": ["oops"]}}
        source = ChartSource({"GOOD": YahooChart("GOOD", good), "BAD": YahooChart("BAD", bad)})
        store = FakeStore(
            [
                Asset(id=1, symbol="BAD", last_updated=date(2024, 5, 1)),
                Asset(id=2, symbol="GOOD", last_updated=date(2024, 5, 1)),
            ]
        )

        summary = await _updater(store, source, now).run()

        assert summary.fetched == 1
        assert summary.failed == 1
        assert store.upsert_calls == [1]
        assert (2, date(2024, 6, 14)) in store.prices
        assert store.marked_ids() == [2]
        assert store.assets[1].last_updated == date(2024, 5, 1)

    async def test_each_fetched_asset_marked_exactly_once(self, now):
        store = FakeStore(_stale(10))
        source = FakeSource({f"SYM{i}": [4] for i in range(1, 11)})

        await _updater(store, source, now, threshold=6).run()

        marked = store.marked_ids()
        assert sorted(marked) == list(range(1, 11))
        assert len(marked) == len(set(marked))

    async def test_threshold_triggers_intermediate_flush(self, now):
        store = FakeStore(_stale(5))
        source = FakeSource({f"SYM{i}": [3] for i in range(1, 6)})

        summary = await _updater(store, source, now, threshold=6).run()

        # assets popped from the end: 3+3 -> flush, 3+3 -> flush, 3 -> final
        assert store.upsert_calls == [6, 6, 3]
        assert summary.flushes == 3
        assert summary.rows_written == 15
        assert len(store.prices) == 15

    async def test_marked_ids_match_flushed_rows(self, now):
        store = FakeStore(_stale(4))
        source = FakeSource({f"SYM{i}": [5] for i in range(1, 5)})

        await _updater(store, source, now, threshold=10).run()

        assert [ids for ids, _ in store.mark_calls] == [[3, 4], [1, 2]]

    async def test_final_flush_only_once(self, now):
        store = FakeStore(_stale(2))
        summary = await _updater(store, FakeSource(), now).run()
        assert store.upsert_calls == [2]
        assert len(store.mark_calls) == 1
        assert summary.flushes == 1

    async def test_nothing_to_do(self, now):
        store = FakeStore([Asset(id=1, symbol="AAPL", last_updated=TODAY)])
        summary = await _updater(store, FakeSource(), now).run()
        assert store.upsert_calls == []
        assert store.mark_calls == []
        assert summary.skipped == 1

    async def test_empty_universe(self, now):
        summary = await _updater(FakeStore([]), FakeSource(), now).run()
        assert summary.assets == 0
        assert summary.flushes == 0

    async def test_zero_row_fetch_still_marks(self, now):
        store = FakeStore(_stale(1))
        summary = await _updater(store, FakeSource({"SYM1": [0]}), now).run()
        assert store.upsert_calls == []
        assert store.marked_ids() == [1]
        assert summary.fetched == 1

    async def test_failed_upsert_keeps_rows_for_next_flush(self, now, caplog):
        store = FakeStore(_stale(4), fail_upserts=1)
        source = FakeSource({f"SYM{i}": [3] for i in range(1, 5)})

        with caplog.at_level(logging.WARNING, logger="price_updater.updater.runner"):
            summary = await _updater(store, source, now, threshold=6).run()

        # the failed 6-row flush is retried as soon as the next asset lands
        assert store.upsert_calls == [6, 9, 3]
        assert summary.failed_flushes == 1
        assert summary.rows_written == 12
        assert [ids for ids, _ in store.mark_calls] == [[2, 3, 4], [1]]
        assert sorted(store.marked_ids()) == [1, 2, 3, 4]
        assert "Error inserting prices" in caplog.text

    async def test_failed_mark_keeps_pending_ids(self, now):
        store = FakeStore(_stale(4), fail_marks=1)
        source = FakeSource({f"SYM{i}": [3] for i in range(1, 5)})

        summary = await _updater(store, source, now, threshold=6).run()

        assert store.mark_calls[0][0] == [3, 4]
        assert store.mark_calls[1][0] == [1, 2, 3, 4]
        assert summary.failed_flushes == 1
        assert all(a.last_updated == TODAY for a in store.assets.values())

    async def test_failed_final_flush_leaves_watermarks(self, now):
        store = FakeStore(_stale(2), fail_upserts=1)
        summary = await _updater(store, FakeSource(), now).run()
        assert summary.failed_flushes == 1
        assert store.mark_calls == []
        assert all(a.last_updated == date(2024, 5, 1) for a in store.assets.values())

    async def test_state_cleared_after_run(self, now):
        store = FakeStore(_stale(2), fail_upserts=1)
        updater = _updater(store, FakeSource(), now)
        await updater.run()
        assert len(updater.frame) == 0
        assert updater.pending_ids == frozenset()

    async def test_list_failure_propagates(self, now):
        from price_updater.core.exceptions import StorageError

        class BrokenStore(FakeStore):
            async def list_assets(self):
                raise StorageError("no db")

        with pytest.raises(StorageError):
            await _updater(BrokenStore([]), FakeSource(), now).run()

    async def test_progress_logged(self, now, caplog):
        store = FakeStore(_stale(1))
        with caplog.at_level(logging.INFO, logger="price_updater.updater.runner"):
            await _updater(store, FakeSource({"SYM1": [7]}), now, threshold=100).run()
        assert "SYM1 - 7 rows [7/100]" in caplog.text
        assert "Inserting remaining 7 rows" in caplog.text
