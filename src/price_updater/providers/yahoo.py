"""Yahoo Finance chart provider: direct HTTP implementation.

Uses the unauthenticated ``/v8/finance/chart/`` endpoint via httpx. Yahoo
throttles aggressively by client fingerprint, so every fetch builds a new
``httpx.AsyncClient`` with a User-Agent drawn from a rotation pool.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from price_updater.core.config import YahooConfig
from price_updater.core.exceptions import (
    DecodeError,
    ProviderError,
    ProviderStatusError,
    RateLimitError,
)
from price_updater.core.models import DateRange
from price_updater.prices.frame import PriceFrame

logger = logging.getLogger(__name__)

# Yahoo Finance chart API base
_BASE_URL = "https://query2.finance.yahoo.com"
_CHART_PATH = "/v8/finance/chart"
_DAILY_INTERVAL = "1d"

_USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36 Edg/123.0.0.0",
)


def new_client(timeout: float = 30.0, rng: random.Random | None = None) -> httpx.AsyncClient:
    """Build an HTTP client with a freshly drawn User-Agent."""
    agent = (rng or random).choice(_USER_AGENTS)
    return httpx.AsyncClient(
        headers={"User-Agent": agent, "Accept": "application/json"},
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
    )


class YahooChart:
    """The ``chart.result[0]`` object of a chart response.

    Null quote values (halts, missing prints) are kept as ``None`` so the
    row still lands in the frame.
    """

    def __init__(self, symbol: str, raw: dict[str, Any]) -> None:
        self.symbol = symbol
        self.raw = raw

    def extract_time_series(self, asset_id: int) -> PriceFrame:
        """Convert the chart arrays into frame rows tagged with ``asset_id``.

        Rows are dated in exchange-local time using ``meta.gmtoffset``.

        Raises:
            DecodeError: the chart has the wrong shape, quote arrays disagree
                in length with the timestamps, or a value is not numeric.
        """
        frame = PriceFrame()
        timestamps, offset, columns = self._arrays()
        for key, values in columns.items():
            if len(values) != len(timestamps):
                raise DecodeError(
                    f"Yahoo chart for {self.symbol}: {key} has {len(values)} values "
                    f"for {len(timestamps)} timestamps",
                    context={"reason": "ragged_arrays", "symbol": self.symbol, "column": key},
                )

        try:
            for i, ts in enumerate(timestamps):
                local = datetime.fromtimestamp(int(ts), tz=timezone.utc) + offset
                volume = columns["volume"][i]
                frame.append(
                    asset_id,
                    local.date(),
                    _as_float(columns["open"][i]),
                    _as_float(columns["high"][i]),
                    _as_float(columns["low"][i]),
                    _as_float(columns["close"][i]),
                    int(volume) if volume is not None else None,
                )
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise DecodeError(
                f"Yahoo chart for {self.symbol} has non-numeric values: {e}",
                context={"reason": "values", "symbol": self.symbol},
            ) from e

        return frame

    def _arrays(self) -> tuple[list, timedelta, dict[str, list]]:
        """Pull timestamps, UTC offset and quote columns out of the raw chart.

        Missing or null sections become empty; a missing quote column is
        all ``None``.

        Raises:
            DecodeError: a section has the wrong JSON type.
        """
        try:
            timestamps = self.raw.get("timestamp") or []
            meta = self.raw.get("meta") or {}
            offset = timedelta(seconds=int(meta.get("gmtoffset") or 0))
            indicators = self.raw.get("indicators") or {}
            quotes = (indicators.get("quote") or [{}])[0] or {}
            if not isinstance(timestamps, list):
                raise TypeError(f"timestamp is {type(timestamps).__name__}, not a list")
            columns = {
                key: quotes.get(key) or [None] * len(timestamps)
                for key in ("open", "high", "low", "close", "volume")
            }
            for key, values in columns.items():
                if not isinstance(values, list):
                    raise TypeError(f"{key} is {type(values).__name__}, not a list")
        except (AttributeError, KeyError, IndexError, TypeError, ValueError, OverflowError) as e:
            raise DecodeError(
                f"Malformed Yahoo chart for {self.symbol}: {e}",
                context={"reason": "shape", "symbol": self.symbol},
            ) from e
        return timestamps, offset, columns


def _as_float(value: Any) -> float | None:
    return float(value) if value is not None else None


class YahooPriceSource:
    """PriceSource backed by the Yahoo Finance chart endpoint.

    Parameters
    ----------
    config : YahooConfig
        Base URL and request timeout.
    rng : random.Random | None
        Source of User-Agent rotation. Module-level random if None.
    """

    name = "yahoo"

    def __init__(self, config: YahooConfig | None = None, rng: random.Random | None = None) -> None:
        self._config = config or YahooConfig()
        self._rng = rng

    def _params(self, date_range: DateRange | None) -> dict[str, str]:
        params = {"interval": _DAILY_INTERVAL, "events": "div,split"}
        if date_range is None:
            params["range"] = "max"
        else:
            params["period1"] = str(int(date_range.start.timestamp()))
            params["period2"] = str(int(date_range.end.timestamp()))
        return params

    async def fetch(self, symbol: str, date_range: DateRange | None) -> YahooChart:
        """Fetch daily bars for one symbol.

        Raises:
            ProviderError: network failure or API-level chart error.
            ProviderStatusError: non-200 response (RateLimitError for 429).
            DecodeError: body is not JSON or has no chart result.
        """
        url = f"{self._config.base_url.rstrip('/')}{_CHART_PATH}/{symbol}"

        async with new_client(self._config.request_timeout, self._rng) as client:
            try:
                response = await client.get(url, params=self._params(date_range))
            except httpx.RequestError as e:
                raise ProviderError(
                    f"Yahoo Finance request failed for {symbol}: {e}",
                    context={"url": url, "symbol": symbol, "error": str(e)},
                ) from e

        if response.status_code == 429:
            raise RateLimitError(
                f"Yahoo Finance rate limited {symbol}",
                context={
                    "url": url,
                    "status_code": 429,
                    "retry_after": response.headers.get("Retry-After"),
                },
            )
        if response.status_code != 200:
            raise ProviderStatusError(
                f"HTTP {response.status_code} from Yahoo Finance for {symbol}",
                context={"url": url, "symbol": symbol, "status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(
                f"Yahoo Finance returned non-JSON body for {symbol}",
                context={"url": url, "symbol": symbol, "reason": "body"},
            ) from e

        if not isinstance(data, dict):
            raise DecodeError(
                f"Yahoo Finance returned an unexpected body for {symbol}",
                context={"url": url, "symbol": symbol, "reason": "body"},
            )

        chart = data.get("chart") or {}
        if chart.get("error"):
            err = chart["error"]
            raise ProviderError(
                f"Yahoo Finance API error for {symbol}: {err.get('code')}: "
                f"{err.get('description')}",
                context={"url": url, "symbol": symbol, "error": str(err)},
            )

        results = chart.get("result")
        if not results:
            raise DecodeError(
                f"Yahoo Finance returned no chart result for {symbol}",
                context={"url": url, "symbol": symbol, "reason": "empty_result"},
            )

        return YahooChart(symbol, results[0])
