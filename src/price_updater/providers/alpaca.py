"""Rate-limited async client for the Alpaca historical bars API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from datetime import date, datetime, time, timezone

import httpx
from aiolimiter import AsyncLimiter
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from price_updater.core.config import AlpacaConfig
from price_updater.core.exceptions import (
    DecodeError,
    ProviderError,
    ProviderStatusError,
    RateLimitError,
)
from price_updater.core.models import DateRange, Sort
from price_updater.prices.frame import PriceFrame
from price_updater.providers.params import QueryParams, Timeframe

logger = logging.getLogger(__name__)

_BASE_URL = "https://data.alpaca.markets"
_BARS_PATH = "/v2/stocks/bars"
_KEY_HEADER = "APCA-API-KEY-ID"
_SECRET_HEADER = "APCA-API-SECRET-KEY"

# Page size used when the caller leaves `limit` unset
DEFAULT_PAGE_LIMIT = 10_000


class Bar(BaseModel):
    """One OHLCV bar as sent by Alpaca."""

    model_config = ConfigDict(frozen=True)

    t: str  # timestamp
    o: float  # open
    h: float  # high
    l: float  # low
    c: float  # close
    v: float  # volume
    vw: float  # volume-weighted average price
    n: int  # trade count

    def trading_date(self) -> date:
        """Calendar date of the bar timestamp.

        Raises:
            DecodeError: if ``t`` is not an ISO 8601 timestamp.
        """
        try:
            return datetime.fromisoformat(self.t).date()
        except ValueError as e:
            raise DecodeError(
                f"Unparsable bar timestamp: {self.t!r}",
                context={"reason": "timestamp", "value": self.t},
            ) from e


class BarsResponse(BaseModel):
    """One page of the bars endpoint."""

    model_config = ConfigDict(frozen=True)

    bars: dict[str, list[Bar]]
    next_page_token: str | None = None

    @field_validator("bars", mode="before")
    @classmethod
    def null_bars_as_empty(cls, v: object) -> object:
        return {} if v is None else v


class AlpacaClient:
    """Authenticated async client for Alpaca's multi-symbol bars endpoint.

    Requests share one token bucket (``rate_limit`` requests per minute).
    Use via ``async with AlpacaClient(...) as client:``.
    """

    def __init__(
        self,
        api_key_id: str,
        api_secret_key: str,
        base_url: str = _BASE_URL,
        timeout: float = 30.0,
        rate_limit: int = 200,
        limiter: AsyncLimiter | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}{_BARS_PATH}"
        self._limiter = limiter or AsyncLimiter(max_rate=rate_limit, time_period=60.0)
        self._client = httpx.AsyncClient(
            headers={_KEY_HEADER: api_key_id, _SECRET_HEADER: api_secret_key},
            timeout=httpx.Timeout(timeout),
        )

    async def __aenter__(self) -> AlpacaClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    async def fetch_page(
        self,
        symbols: Sequence[str],
        params: QueryParams | None = None,
    ) -> BarsResponse:
        """Fetch a single page of bars.

        Raises:
            ParamFormatError: a query parameter cannot be rendered.
            ProviderError: network failure.
            ProviderStatusError: non-200 response (RateLimitError for 429).
            DecodeError: response body is not a valid bars page.
        """
        if not symbols:
            raise ValueError("symbols must not be empty")

        query = (params or QueryParams()).to_param_list()
        query.append(("symbols", ",".join(symbols)))

        await self._limiter.acquire()
        try:
            response = await self._client.get(self._url, params=query)
        except httpx.RequestError as e:
            raise ProviderError(
                f"Request to Alpaca failed: {e}",
                context={"url": self._url, "symbol": ",".join(symbols), "error": str(e)},
            ) from e

        if response.status_code == 429:
            raise RateLimitError(
                f"Alpaca rate limit exceeded: {self._url}",
                context={
                    "url": self._url,
                    "status_code": 429,
                    "retry_after": response.headers.get("Retry-After"),
                },
            )
        if response.status_code != 200:
            raise ProviderStatusError(
                f"HTTP {response.status_code} from {self._url}",
                context={"url": self._url, "status_code": response.status_code},
            )

        try:
            return BarsResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DecodeError(
                f"Malformed bars response from {self._url}: {e}",
                context={"url": self._url, "reason": "body"},
            ) from e

    async def stream_pages(
        self,
        symbols: Sequence[str],
        params: QueryParams | None = None,
    ) -> AsyncIterator[dict[str, list[Bar]]]:
        """Lazily yield each page's ``symbol -> bars`` mapping.

        The cursor lives in this generator's frame, so an iterator must not
        be shared between concurrent consumers. Iteration ends after the
        last page (no ``next_page_token``). A failing page raises its error
        to the consumer, after which the generator is finished.
        """
        query = params or QueryParams()
        if query.limit is None:
            query = query.model_copy(update={"limit": DEFAULT_PAGE_LIMIT})

        while True:
            response = await self.fetch_page(symbols, query)
            yield response.bars

            if response.next_page_token is None:
                return
            query = query.model_copy(update={"page_token": response.next_page_token})

    async def fetch_all(
        self,
        symbols: Sequence[str],
        params: QueryParams | None = None,
    ) -> dict[str, list[Bar]]:
        """Follow page tokens to the end and merge bars per symbol.

        Bars are concatenated in page order. If any page fails the whole
        call raises; no partial result is returned.
        """
        merged: dict[str, list[Bar]] = {}
        pages = 0
        async for page in self.stream_pages(symbols, params):
            pages += 1
            for symbol, bars in page.items():
                merged.setdefault(symbol, []).extend(bars)

        logger.debug(
            "Fetched %d page(s) for %s: %d bars",
            pages,
            ",".join(symbols),
            sum(len(b) for b in merged.values()),
        )
        return merged


class AlpacaSeries:
    """Daily bars for one symbol, convertible into frame rows."""

    def __init__(self, symbol: str, bars: list[Bar]) -> None:
        self.symbol = symbol
        self.bars = bars

    def extract_time_series(self, asset_id: int) -> PriceFrame:
        frame = PriceFrame()
        for bar in self.bars:
            frame.append(
                asset_id,
                bar.trading_date(),
                bar.o,
                bar.h,
                bar.l,
                bar.c,
                round(bar.v),
            )
        return frame


class AlpacaPriceSource:
    """PriceSource backed by the Alpaca bars API.

    Each fetch opens its own AlpacaClient and follows pagination to the end.
    Without a date range the request starts at ``history_start``.
    """

    name = "alpaca"

    def __init__(self, config: AlpacaConfig) -> None:
        if not (config.api_key_id and config.api_secret_key):
            raise ValueError("Alpaca credentials are required")
        self._config = config
        # One token bucket for every per-fetch client
        self._limiter = AsyncLimiter(max_rate=config.rate_limit, time_period=60.0)

    def _query(self, date_range: DateRange | None) -> QueryParams:
        if date_range is None:
            start = datetime.combine(self._config.history_start, time(0), tzinfo=timezone.utc)
            end = None
        else:
            start, end = date_range.start, date_range.end
        return QueryParams(
            timeframe=Timeframe.day(),
            start=start,
            end=end,
            feed=self._config.feed,
            adjustment=self._config.adjustment,
            sort=Sort.ASC,
        )

    async def fetch(self, symbol: str, date_range: DateRange | None) -> AlpacaSeries:
        async with AlpacaClient(
            self._config.api_key_id,
            self._config.api_secret_key,
            base_url=self._config.base_url,
            timeout=self._config.request_timeout,
            limiter=self._limiter,
        ) as client:
            bars = await client.fetch_all([symbol], self._query(date_range))
        return AlpacaSeries(symbol, bars.get(symbol, []))
