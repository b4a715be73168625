"""Shared pytest fixtures for price-updater."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from price_updater.core.config import StorageConfig
from price_updater.core.models import Asset
from price_updater.prices.store import SqlitePriceStore
from tests.fakes import FakeSeries


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 15, 21, 30, tzinfo=timezone.utc)


@pytest.fixture
def sample_assets() -> list[Asset]:
    return [
        Asset(id=1, symbol="AAPL", last_updated=date(2024, 5, 1)),
        Asset(id=2, symbol="MSFT", last_updated=None),
        Asset(id=3, symbol="GOOGL", last_updated=date(2024, 6, 15)),
    ]


@pytest.fixture
def make_frame():
    """Factory for a PriceFrame with ``rows`` rows for ``asset_id``."""

    def _make(asset_id: int = 1, rows: int = 3, first_day: date = date(2024, 1, 2)):
        return FakeSeries(rows, first_day).extract_time_series(asset_id)

    return _make


@pytest.fixture
async def store():
    """An initialized in-memory SqlitePriceStore."""
    s = SqlitePriceStore(StorageConfig(sqlite_path=":memory:"))
    await s.initialize()
    yield s
    await s.close()
