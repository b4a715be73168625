"""Query parameters for the Alpaca bars endpoint and their wire formatting.

Only populated fields are serialized, one ``(key, value)`` pair each, in a
fixed field order. Enumerations go through explicit token tables so the
Python member names never leak onto the wire.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator

from price_updater.core.exceptions import ParamFormatError
from price_updater.core.models import Adjustment, Feed, KnownCurrency, Sort


class TimeframeUnit(StrEnum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


_TIMEFRAME_SUFFIX: dict[TimeframeUnit, str] = {
    TimeframeUnit.MINUTE: "Min",
    TimeframeUnit.HOUR: "Hour",
    TimeframeUnit.DAY: "Day",
    TimeframeUnit.WEEK: "Week",
    TimeframeUnit.MONTH: "Month",
}

_FEED_TOKENS: dict[Feed, str] = {
    Feed.SIP: "sip",
    Feed.IEX: "iex",
    Feed.BOATS: "boats",
}

_ADJUSTMENT_TOKENS: dict[Adjustment, str] = {
    Adjustment.RAW: "raw",
    Adjustment.SPLIT: "split",
    Adjustment.DIVIDEND: "dividend",
    Adjustment.SPIN_OFF: "spin-off",
    Adjustment.ALL: "all",
}

_SORT_TOKENS: dict[Sort, str] = {
    Sort.ASC: "asc",
    Sort.DESC: "desc",
}


class Timeframe(BaseModel):
    """Bar aggregation period.

    Build with the named constructors; ``day()`` and ``week()`` are fixed at
    an amount of one.
    """

    model_config = ConfigDict(frozen=True)

    unit: TimeframeUnit
    amount: int = 1

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"timeframe amount must be >= 1, got {v}")
        return v

    @classmethod
    def minutes(cls, n: int) -> Timeframe:
        return cls(unit=TimeframeUnit.MINUTE, amount=n)

    @classmethod
    def hours(cls, n: int) -> Timeframe:
        return cls(unit=TimeframeUnit.HOUR, amount=n)

    @classmethod
    def day(cls) -> Timeframe:
        return cls(unit=TimeframeUnit.DAY)

    @classmethod
    def week(cls) -> Timeframe:
        return cls(unit=TimeframeUnit.WEEK)

    @classmethod
    def months(cls, n: int) -> Timeframe:
        return cls(unit=TimeframeUnit.MONTH, amount=n)


class OtherCurrency(BaseModel):
    """Any currency without a KnownCurrency member; the code is sent verbatim."""

    model_config = ConfigDict(frozen=True)

    code: str


Currency = KnownCurrency | OtherCurrency
DateOrTime = datetime | date


def format_timeframe(tf: Timeframe) -> str:
    if tf.unit in (TimeframeUnit.DAY, TimeframeUnit.WEEK):
        return f"1{_TIMEFRAME_SUFFIX[tf.unit]}"
    return f"{tf.amount}{_TIMEFRAME_SUFFIX[tf.unit]}"


def format_date(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def format_date_or_time(value: DateOrTime, field: str = "date") -> str:
    """Render a timestamp as RFC 3339 or a bare date as YYYY-MM-DD.

    Raises:
        ParamFormatError: naive timestamps and offsets with a seconds
            component have no RFC 3339 rendering.
    """
    # datetime subclasses date, so it must be checked first
    if isinstance(value, datetime):
        return _format_rfc3339(value, field)
    return format_date(value)


def _format_rfc3339(dt: datetime, field: str) -> str:
    offset = dt.utcoffset()
    if offset is None:
        raise ParamFormatError(
            f"Cannot format naive datetime for {field!r}: a UTC offset is required",
            context={"field": field, "value": repr(dt)},
        )
    if offset % timedelta(minutes=1):
        raise ParamFormatError(
            f"Cannot format UTC offset {offset} for {field!r} in RFC 3339",
            context={"field": field, "value": repr(dt)},
        )
    text = dt.isoformat()
    if offset == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


def format_currency(currency: Currency) -> str:
    if isinstance(currency, OtherCurrency):
        return currency.code
    return currency.value


class QueryParams(BaseModel):
    """Optional query options for one bars request."""

    model_config = ConfigDict(frozen=True)

    timeframe: Timeframe | None = None
    start: DateOrTime | None = None
    end: DateOrTime | None = None
    asof: date | None = None
    feed: Feed | None = None
    currency: Currency | None = None
    adjustment: Adjustment | None = None
    limit: int | None = None
    page_token: str | None = None
    sort: Sort | None = None

    @field_validator("limit")
    @classmethod
    def limit_in_range(cls, v: int | None) -> int | None:
        if v is not None and not 1 <= v <= 10_000:
            raise ValueError(f"limit must be between 1 and 10000, got {v}")
        return v

    def to_param_list(self) -> list[tuple[str, str]]:
        """Serialize set fields to wire-format key/value pairs.

        Raises:
            ParamFormatError: if a timestamp cannot be rendered.
        """
        params: list[tuple[str, str]] = []

        if self.timeframe is not None:
            params.append(("timeframe", format_timeframe(self.timeframe)))
        if self.start is not None:
            params.append(("start", format_date_or_time(self.start, "start")))
        if self.end is not None:
            params.append(("end", format_date_or_time(self.end, "end")))
        if self.asof is not None:
            params.append(("asof", format_date(self.asof)))
        if self.feed is not None:
            params.append(("feed", _FEED_TOKENS[self.feed]))
        if self.currency is not None:
            params.append(("currency", format_currency(self.currency)))
        if self.adjustment is not None:
            params.append(("adjustment", _ADJUSTMENT_TOKENS[self.adjustment]))
        if self.limit is not None:
            params.append(("limit", str(self.limit)))
        if self.page_token is not None:
            params.append(("page_token", self.page_token))
        if self.sort is not None:
            params.append(("sort", _SORT_TOKENS[self.sort]))

        return params
