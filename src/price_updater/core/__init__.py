"""price_updater.core - Foundation types, config, and exceptions."""

from price_updater.core.config import (
    AlpacaConfig,
    FetchConfig,
    StorageConfig,
    UpdaterConfig,
    YahooConfig,
    load_config,
)
from price_updater.core.exceptions import (
    ConfigError,
    DecodeError,
    ParamFormatError,
    PriceUpdaterError,
    ProviderError,
    ProviderStatusError,
    RateLimitError,
    StorageError,
)
from price_updater.core.models import (
    Adjustment,
    Asset,
    AssetId,
    DateRange,
    Feed,
    KnownCurrency,
    ProviderName,
    Sort,
    Symbol,
)

__all__ = [
    # Type aliases
    "AssetId",
    "Symbol",
    # Enums
    "ProviderName",
    "Feed",
    "Adjustment",
    "Sort",
    "KnownCurrency",
    # Models
    "Asset",
    "DateRange",
    # Config
    "UpdaterConfig",
    "StorageConfig",
    "FetchConfig",
    "YahooConfig",
    "AlpacaConfig",
    "load_config",
    # Exceptions
    "PriceUpdaterError",
    "ConfigError",
    "ProviderError",
    "ProviderStatusError",
    "RateLimitError",
    "DecodeError",
    "ParamFormatError",
    "StorageError",
]
