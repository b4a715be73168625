"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from datetime import date
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from price_updater.core.exceptions import ConfigError
from price_updater.core.models import Adjustment, Feed, ProviderName


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    model_config = ConfigDict(frozen=True)

    sqlite_path: str = "./data/prices.db"


class FetchConfig(BaseModel):
    """Per-asset fetch loop configuration."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderName = ProviderName.YAHOO
    pacing_seconds: float = 2.0

    @field_validator("pacing_seconds")
    @classmethod
    def pacing_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("pacing_seconds must be >= 0")
        return v


class YahooConfig(BaseModel):
    """Yahoo Finance chart API access."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://query2.finance.yahoo.com"
    request_timeout: float = 30.0


class AlpacaConfig(BaseModel):
    """Alpaca market-data API access."""

    model_config = ConfigDict(frozen=True)

    api_key_id: str | None = None
    api_secret_key: str | None = None
    base_url: str = "https://data.alpaca.markets"
    feed: Feed = Feed.IEX
    adjustment: Adjustment = Adjustment.ALL
    rate_limit: int = 200
    request_timeout: float = 30.0
    history_start: date = date(2016, 1, 1)

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_within_plan(cls, v: int) -> int:
        if v < 1 or v > 10_000:
            raise ValueError("rate_limit must be between 1 and 10000 requests/minute")
        return v


class UpdaterConfig(BaseModel):
    """Root configuration for the price updater."""

    model_config = ConfigDict(frozen=True)

    storage: StorageConfig = StorageConfig()
    fetch: FetchConfig = FetchConfig()
    yahoo: YahooConfig = YahooConfig()
    alpaca: AlpacaConfig = AlpacaConfig()

    @model_validator(mode="after")
    def alpaca_keys_required(self) -> UpdaterConfig:
        if self.fetch.provider == ProviderName.ALPACA and not (
            self.alpaca.api_key_id and self.alpaca.api_secret_key
        ):
            raise ValueError(
                "alpaca.api_key_id and alpaca.api_secret_key are required "
                "when fetch.provider is 'alpaca'"
            )
        return self


def load_config(
    config_path: str | None = None,
    env_prefix: str = "PRICE_UPDATER_",
) -> UpdaterConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (PRICE_UPDATER_FETCH__PACING_SECONDS, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        PRICE_UPDATER_ALPACA__FEED=sip  ->  alpaca.feed = "sip"
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return UpdaterConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("PRICE_UPDATER_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from PRICE_UPDATER_CONFIG not found: {env_path}",
                context={"field": "PRICE_UPDATER_CONFIG", "value": env_path},
            )
        return p

    default = Path("price-updater.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if part not in target or not isinstance(target[part], dict):
                target[part] = {}
            else:
                target[part] = dict(target[part])
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
