"""Provider protocols: the seam between the fetch loop and data sources.

    PriceSource.fetch(symbol, range) → PriceSeries → extract_time_series(id) → PriceFrame

- **PriceSource** performs the network call. Every call builds its own
  HTTP client, so each retry attempt presents a fresh client identity.
  Transport, status and body-decoding failures raise ``ProviderError``
  subclasses, which the retry loop treats as retryable.

- **PriceSeries** holds one decoded response and converts it into frame
  rows tagged with an asset id. Conversion failures raise ``DecodeError``
  and are not retried.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from price_updater.core.models import DateRange
from price_updater.prices.frame import PriceFrame


@runtime_checkable
class PriceSeries(Protocol):
    """A decoded provider time series for one symbol."""

    def extract_time_series(self, asset_id: int) -> PriceFrame: ...


@runtime_checkable
class PriceSource(Protocol):
    """Fetches daily bars for one symbol.

    ``date_range`` of None asks the provider for its default full history.
    """

    name: str

    async def fetch(self, symbol: str, date_range: DateRange | None) -> PriceSeries: ...
