"""Pydantic data models shared across the updater."""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# --- Type Aliases ---

AssetId = int
Symbol = str

# --- Enumerations ---


class ProviderName(StrEnum):
    """Market-data providers the updater can pull from."""

    YAHOO = "yahoo"
    ALPACA = "alpaca"


class Feed(StrEnum):
    """Alpaca bar data feeds."""

    SIP = "sip"
    IEX = "iex"
    BOATS = "boats"


class Adjustment(StrEnum):
    """Corporate-action adjustment applied to bars."""

    RAW = "raw"
    SPLIT = "split"
    DIVIDEND = "dividend"
    SPIN_OFF = "spin_off"
    ALL = "all"


class Sort(StrEnum):
    """Bar ordering within a page."""

    ASC = "asc"
    DESC = "desc"


class KnownCurrency(StrEnum):
    """Currencies with a dedicated variant. Anything else is OtherCurrency."""

    EUR = "EUR"
    USD = "USD"


# --- Models ---


class Asset(BaseModel):
    """One tracked instrument and its watermark."""

    model_config = ConfigDict(frozen=True)

    id: AssetId
    symbol: Symbol
    last_updated: date | None = None

    @field_validator("symbol")
    @classmethod
    def symbol_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("symbol must not be blank")
        return v.strip()


class DateRange(BaseModel):
    """Inclusive fetch window, both ends timezone-aware."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def must_be_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("DateRange bounds must be timezone-aware")
        return v

    @model_validator(mode="after")
    def end_not_before_start(self) -> DateRange:
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must not precede start ({self.start})")
        return self
