"""price-updater: incremental daily OHLCV refresh for an asset universe."""

__version__ = "0.1.0"
