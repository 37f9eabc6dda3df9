"""Calendar windows used by aggregation and budget periods."""

from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


@dataclass(frozen=True)
class DateWindow:
    """Inclusive calendar range ``[first, last]``; either side may be open."""

    first: Optional[date] = None
    last: Optional[date] = None

    def __post_init__(self) -> None:
        if self.first and self.last and self.first > self.last:
            raise ValueError("Window start must not be after its end.")

    @classmethod
    def month(cls, year: int, month: int) -> "DateWindow":
        last_day = monthrange(year, month)[1]
        return cls(date(year, month, 1), date(year, month, last_day))

    @classmethod
    def year(cls, year: int) -> "DateWindow":
        return cls(date(year, 1, 1), date(year, 12, 31))

    @classmethod
    def last_days(cls, days: int, *, today: date) -> "DateWindow":
        """The ``days`` most recent calendar days, today included."""
        if days < 1:
            raise ValueError("days must be at least 1")
        return cls(today - timedelta(days=days - 1), today)

    @classmethod
    def half_open(cls, start: date, end: date) -> "DateWindow":
        """Build from a half-open ``[start, end)`` period."""
        return cls(start, end - timedelta(days=1))

    @property
    def start(self) -> Optional[date]:
        return self.first

    @property
    def end_exclusive(self) -> Optional[date]:
        """Exclusive upper bound as used by the repositories."""
        return self.last + timedelta(days=1) if self.last else None

    def contains(self, day: date) -> bool:
        return (self.first is None or day >= self.first) and (self.last is None or day <= self.last)

    def days(self) -> list[date]:
        if self.first is None or self.last is None:
            raise ValueError("Open-ended windows cannot be enumerated.")
        span = (self.last - self.first).days + 1
        return [self.first + timedelta(days=offset) for offset in range(span)]
