"""Price rows in memory and at rest.

- ``PriceFrame``: columnar buffer of daily rows across assets.
- ``PriceSink``: persistence protocol the updater writes through.
- ``SqlitePriceStore``: aiosqlite-backed PriceSink with bulk upsert.
"""

from price_updater.prices.frame import FLUSH_THRESHOLD, PriceFrame, PriceRow
from price_updater.prices.store import PriceSink, SqlitePriceStore, create_store

__all__ = [
    "FLUSH_THRESHOLD",
    "PriceFrame",
    "PriceRow",
    "PriceSink",
    "SqlitePriceStore",
    "create_store",
]
