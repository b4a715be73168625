"""Tests for the Alpaca bars client and price source."""

from __future__ import annotations

from datetime import date, datetime, timezone

import httpx
import pytest
import respx

from price_updater.core.config import AlpacaConfig
from price_updater.core.exceptions import (
    DecodeError,
    ParamFormatError,
    ProviderError,
    ProviderStatusError,
    RateLimitError,
)
from price_updater.core.models import Adjustment, DateRange, Feed, Sort
from price_updater.providers.alpaca import (
    DEFAULT_PAGE_LIMIT,
    AlpacaClient,
    AlpacaPriceSource,
    AlpacaSeries,
    Bar,
    BarsResponse,
)
from price_updater.providers.params import QueryParams, Timeframe

BARS_URL = "https://data.alpaca.markets/v2/stocks/bars"


def _bar(day: int, close: float = 100.0) -> dict:
    return {
        "t": f"2024-01-{day:02d}T05:00:00Z",
        "o": close - 1,
        "h": close + 1,
        "l": close - 2,
        "c": close,
        "v": 1000.0 + day,
        "vw": close,
        "n": 10,
    }


def _page(bars: dict, token: str | None = None) -> httpx.Response:
    return httpx.Response(200, json={"bars": bars, "next_page_token": token})


@pytest.fixture
async def client():
    async with AlpacaClient("key-id", "secret", rate_limit=1000) as c:
        yield c


class TestBarModels:
    def test_trading_date(self):
        assert Bar(**_bar(5)).trading_date() == date(2024, 1, 5)

    def test_bad_timestamp(self):
        bar = Bar(**{**_bar(5), "t": "yesterday"})
        with pytest.raises(DecodeError, match="Unparsable"):
            bar.trading_date()

    def test_null_bars_is_empty(self):
        resp = BarsResponse.model_validate({"bars": None, "next_page_token": None})
        assert resp.bars == {}

    def test_series_extraction(self):
        series = AlpacaSeries("AAPL", [Bar(**_bar(2, 10.0)), Bar(**_bar(3, 11.0))])
        frame = series.extract_time_series(9)
        assert list(frame.rows()) == [
            (9, date(2024, 1, 2), 9.0, 11.0, 8.0, 10.0, 1002),
            (9, date(2024, 1, 3), 10.0, 12.0, 9.0, 11.0, 1003),
        ]

    def test_fractional_volume_rounded(self):
        bars = [Bar(**{**_bar(2), "v": 1500.6}), Bar(**{**_bar(3), "v": 1500.4})]
        frame = AlpacaSeries("AAPL", bars).extract_time_series(1)
        assert frame.volume == [1501, 1500]


class TestFetchPage:
    @respx.mock
    async def test_sends_auth_headers_and_symbols(self, client):
        route = respx.get(BARS_URL).mock(return_value=_page({"AAPL": [_bar(2)]}))

        page = await client.fetch_page(["AAPL", "MSFT"], QueryParams(timeframe=Timeframe.day()))

        request = route.calls.last.request
        assert request.headers["APCA-API-KEY-ID"] == "key-id"
        assert request.headers["APCA-API-SECRET-KEY"] == "secret"
        assert request.url.params["symbols"] == "AAPL,MSFT"
        assert request.url.params["timeframe"] == "1Day"
        assert len(page.bars["AAPL"]) == 1
        assert page.next_page_token is None

    async def test_empty_symbols_rejected(self, client):
        with pytest.raises(ValueError, match="symbols"):
            await client.fetch_page([])

    @respx.mock
    async def test_rate_limited(self, client):
        respx.get(BARS_URL).mock(
            return_value=httpx.Response(429, headers={"Retry-After": "3"})
        )
        with pytest.raises(RateLimitError) as exc_info:
            await client.fetch_page(["AAPL"])
        assert exc_info.value.context["retry_after"] == "3"

    @respx.mock
    async def test_server_error(self, client):
        respx.get(BARS_URL).mock(return_value=httpx.Response(500))
        with pytest.raises(ProviderStatusError) as exc_info:
            await client.fetch_page(["AAPL"])
        assert exc_info.value.context["status_code"] == 500
        assert not isinstance(exc_info.value, RateLimitError)

    @respx.mock
    async def test_network_error(self, client):
        respx.get(BARS_URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ProviderError, match="Request to Alpaca failed"):
            await client.fetch_page(["AAPL"])

    @respx.mock
    async def test_malformed_body(self, client):
        respx.get(BARS_URL).mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(DecodeError):
            await client.fetch_page(["AAPL"])

    @respx.mock
    async def test_schema_mismatch(self, client):
        respx.get(BARS_URL).mock(
            return_value=httpx.Response(200, json={"bars": {"AAPL": [{"t": "x"}]}})
        )
        with pytest.raises(DecodeError):
            await client.fetch_page(["AAPL"])

    @respx.mock(assert_all_called=False)
    async def test_bad_param_fails_before_request(self, client):
        route = respx.get(BARS_URL).mock(return_value=_page({}))
        with pytest.raises(ParamFormatError):
            await client.fetch_page(["AAPL"], QueryParams(start=datetime(2024, 1, 1)))
        assert not route.called


class TestPagination:
    @respx.mock
    async def test_fetch_all_merges_pages(self, client):
        route = respx.get(BARS_URL).mock(
            side_effect=[
                _page({"AAPL": [_bar(2)], "MSFT": [_bar(2)]}, token="X"),
                _page({"AAPL": [_bar(3)]}),
            ]
        )

        bars = await client.fetch_all(["AAPL", "MSFT"])

        assert [b.t for b in bars["AAPL"]] == ["2024-01-02T05:00:00Z", "2024-01-03T05:00:00Z"]
        assert len(bars["MSFT"]) == 1
        assert route.call_count == 2
        first, second = (c.request.url.params for c in route.calls)
        assert "page_token" not in first
        assert second["page_token"] == "X"

    @respx.mock
    async def test_default_limit_applied(self, client):
        route = respx.get(BARS_URL).mock(return_value=_page({}))
        await client.fetch_all(["AAPL"])
        assert route.calls.last.request.url.params["limit"] == str(DEFAULT_PAGE_LIMIT)

    @respx.mock
    async def test_explicit_limit_kept(self, client):
        route = respx.get(BARS_URL).mock(return_value=_page({}))
        await client.fetch_all(["AAPL"], QueryParams(limit=50))
        assert route.calls.last.request.url.params["limit"] == "50"

    @respx.mock
    async def test_failure_mid_pagination_returns_nothing(self, client):
        respx.get(BARS_URL).mock(
            side_effect=[_page({"AAPL": [_bar(2)]}, token="X"), httpx.Response(503)]
        )
        with pytest.raises(ProviderStatusError):
            await client.fetch_all(["AAPL"])

    @respx.mock
    async def test_stream_pages_in_order(self, client):
        respx.get(BARS_URL).mock(
            side_effect=[
                _page({"AAPL": [_bar(2)]}, token="A"),
                _page({"AAPL": [_bar(3)]}, token="B"),
                _page({"AAPL": [_bar(4)]}),
            ]
        )
        seen = []
        async for page in client.stream_pages(["AAPL"]):
            seen.append(page["AAPL"][0].t[:10])
        assert seen == ["2024-01-02", "2024-01-03", "2024-01-04"]

    @respx.mock
    async def test_stream_pages_stops_after_error(self, client):
        respx.get(BARS_URL).mock(
            side_effect=[_page({"AAPL": [_bar(2)]}, token="A"), httpx.Response(500)]
        )
        pages = client.stream_pages(["AAPL"])
        first = await pages.__anext__()
        assert "AAPL" in first
        with pytest.raises(ProviderStatusError):
            await pages.__anext__()
        with pytest.raises(StopAsyncIteration):
            await pages.__anext__()


class TestAlpacaPriceSource:
    @pytest.fixture
    def config(self) -> AlpacaConfig:
        return AlpacaConfig(
            api_key_id="key-id",
            api_secret_key="secret",
            feed=Feed.SIP,
            adjustment=Adjustment.SPLIT,
        )

    def test_credentials_required(self):
        with pytest.raises(ValueError, match="credentials"):
            AlpacaPriceSource(AlpacaConfig())

    def test_query_without_range_uses_history_start(self, config):
        query = AlpacaPriceSource(config)._query(None)
        assert query.start == datetime(2016, 1, 1, tzinfo=timezone.utc)
        assert query.end is None
        assert query.timeframe == Timeframe.day()
        assert query.sort is Sort.ASC

    @respx.mock
    async def test_fetch_daily_bars(self, config):
        route = respx.get(BARS_URL).mock(
            return_value=_page({"AAPL": [_bar(2), _bar(3)]})
        )
        date_range = DateRange(
            start=datetime(2024, 1, 1, tzinfo=timezone.utc),
            end=datetime(2024, 1, 31, tzinfo=timezone.utc),
        )

        series = await AlpacaPriceSource(config).fetch("AAPL", date_range)

        params = route.calls.last.request.url.params
        assert params["timeframe"] == "1Day"
        assert params["start"] == "2024-01-01T00:00:00Z"
        assert params["end"] == "2024-01-31T00:00:00Z"
        assert params["feed"] == "sip"
        assert params["adjustment"] == "split"
        assert params["sort"] == "asc"
        assert params["symbols"] == "AAPL"
        assert len(series.extract_time_series(1)) == 2

    @respx.mock
    async def test_symbol_missing_from_response(self, config):
        respx.get(BARS_URL).mock(return_value=_page({}))
        series = await AlpacaPriceSource(config).fetch("ZZZZ", None)
        assert len(series.extract_time_series(1)) == 0
