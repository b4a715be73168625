"""Market-data providers.

- ``params``: Alpaca query options and their wire formatting.
- ``alpaca``: cursor-paginated Alpaca bars client and its PriceSource.
- ``yahoo``: Yahoo Finance chart PriceSource.
"""

from price_updater.core.config import UpdaterConfig
from price_updater.core.models import ProviderName
from price_updater.providers.alpaca import (
    AlpacaClient,
    AlpacaPriceSource,
    AlpacaSeries,
    Bar,
    BarsResponse,
)
from price_updater.providers.base import PriceSeries, PriceSource
from price_updater.providers.params import (
    Currency,
    OtherCurrency,
    QueryParams,
    Timeframe,
    TimeframeUnit,
)
from price_updater.providers.yahoo import YahooChart, YahooPriceSource


def create_source(config: UpdaterConfig) -> PriceSource:
    """Build the PriceSource selected by ``config.fetch.provider``."""
    if config.fetch.provider == ProviderName.ALPACA:
        return AlpacaPriceSource(config.alpaca)
    return YahooPriceSource(config.yahoo)


__all__ = [
    # Protocols
    "PriceSource",
    "PriceSeries",
    # Request model
    "QueryParams",
    "Timeframe",
    "TimeframeUnit",
    "Currency",
    "OtherCurrency",
    # Alpaca
    "AlpacaClient",
    "AlpacaPriceSource",
    "AlpacaSeries",
    "Bar",
    "BarsResponse",
    # Yahoo Finance
    "YahooChart",
    "YahooPriceSource",
    "create_source",
]
