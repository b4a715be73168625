"""Integration test fixtures: real SQLite file, HTTP mocked with respx."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from price_updater.core.config import StorageConfig
from price_updater.prices.store import SqlitePriceStore, create_store


@pytest.fixture
async def integration_store(tmp_path: Path) -> SqlitePriceStore:
    """An initialized file-backed store."""
    store = await create_store(StorageConfig(sqlite_path=str(tmp_path / "integration.db")))
    yield store
    await store.close()


@pytest.fixture
async def populated_store(integration_store: SqlitePriceStore) -> SqlitePriceStore:
    """AAPL updated on 2024-06-10, MSFT never updated, SPY already current."""
    aapl, msft, spy = sorted(
        await integration_store.add_assets(["AAPL", "MSFT", "SPY"]), key=lambda a: a.symbol
    )
    await integration_store.mark_updated([aapl.id], date(2024, 6, 10))
    await integration_store.mark_updated([spy.id], date(2024, 6, 15))
    return integration_store
