"""Custom exception hierarchy for price-updater."""

from typing import Any


class PriceUpdaterError(Exception):
    """Base exception for all price-updater errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(PriceUpdaterError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str - the config field that failed validation
        value: Any - the invalid value (redacted for secrets)
    """


class ProviderError(PriceUpdaterError):
    """Failed to fetch price data from a market-data provider.

    Policy: retried by RetryingFetcher with pacing and backoff, then
    abandoned for the run. The asset's watermark is left untouched.

    Context keys:
        url: str - the URL that was being fetched
        symbol: str - the symbol(s) requested
        error: str - the underlying transport error
    """


class ProviderStatusError(ProviderError):
    """Provider answered with a non-success HTTP status.

    Context keys:
        status_code: int - the HTTP status returned
    """


class RateLimitError(ProviderStatusError):
    """Provider rate limit exceeded (HTTP 429).

    Context keys:
        retry_after: str | None - Retry-After header, if sent
    """


class DecodeError(ProviderError):
    """Provider response could not be decoded.

    Covers malformed JSON, schema mismatches, unparsable timestamps and
    ragged column arrays. Raised during extraction it is a hard failure for
    the asset (not retried).

    Context keys:
        reason: str - what failed to decode
    """


class ParamFormatError(PriceUpdaterError):
    """A request parameter could not be rendered to its wire format.

    Policy: hard failure for that single request. Never retried.

    Context keys:
        field: str - the query field being formatted
        value: str - repr of the offending value
    """


class StorageError(PriceUpdaterError):
    """Database operation failed.

    Policy: the store raises immediately; the updater logs the failure and
    keeps its buffered rows for a later flush.

    Context keys:
        operation: str - "upsert", "query", "migrate", etc.
        table: str - the table involved
    """
