"""Columnar price buffer shared across assets within one update run."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date

FLUSH_THRESHOLD = 10_000

PriceRow = tuple[int, date, float | None, float | None, float | None, float | None, int | None]


@dataclass
class PriceFrame:
    """Parallel columns of daily price rows awaiting a bulk write.

    Every column always has the same length; ``len(frame)`` is the row count.
    OHLC and volume may be ``None`` where the provider had no value.
    """

    asset_id: list[int] = field(default_factory=list)
    date: list[date] = field(default_factory=list)
    open: list[float | None] = field(default_factory=list)
    high: list[float | None] = field(default_factory=list)
    low: list[float | None] = field(default_factory=list)
    close: list[float | None] = field(default_factory=list)
    volume: list[int | None] = field(default_factory=list)

    def __post_init__(self) -> None:
        lengths = {len(col) for col in self._columns()}
        if len(lengths) > 1:
            raise ValueError(f"PriceFrame columns have unequal lengths: {sorted(lengths)}")

    def __len__(self) -> int:
        return len(self.asset_id)

    def _columns(self) -> tuple[list, ...]:
        return (
            self.asset_id,
            self.date,
            self.open,
            self.high,
            self.low,
            self.close,
            self.volume,
        )

    def append(
        self,
        asset_id: int,
        day: date,
        open: float | None,
        high: float | None,
        low: float | None,
        close: float | None,
        volume: int | None,
    ) -> None:
        """Add one row."""
        self.asset_id.append(asset_id)
        self.date.append(day)
        self.open.append(open)
        self.high.append(high)
        self.low.append(low)
        self.close.append(close)
        self.volume.append(volume)

    def extend(self, other: PriceFrame) -> None:
        """Append all rows of ``other``, column by column."""
        for mine, theirs in zip(self._columns(), other._columns()):
            mine.extend(theirs)

    def clear(self) -> None:
        """Drop every row."""
        for col in self._columns():
            col.clear()

    def rows(self) -> Iterator[PriceRow]:
        """Yield row tuples in (asset_id, date, open, high, low, close, volume) order."""
        return zip(*self._columns())

    def asset_ids(self) -> set[int]:
        return set(self.asset_id)
