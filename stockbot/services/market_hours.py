from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

END_OF_DAY = 24 * 60
WEEKDAYS = (0, 1, 2, 3, 4)


def _parse_clock(value: str) -> int:
    hours, sep, minutes = value.strip().partition(":")
    if not sep:
        minutes = "0"
    total = int(hours) * 60 + int(minutes)
    if not 0 <= total <= END_OF_DAY or not 0 <= int(minutes) < 60:
        raise ValueError(f"invalid clock value: {value!r}")
    return total


def parse_windows(raw: str) -> list[tuple[int, int]]:
    """Parse ``"21:30-24:00,00:00-04:00"`` into minute-of-day ``[start, end)`` pairs."""
    windows: list[tuple[int, int]] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        start_raw, sep, end_raw = chunk.partition("-")
        if not sep:
            raise ValueError(f"invalid market window: {chunk!r}")
        start, end = _parse_clock(start_raw), _parse_clock(end_raw)
        if start >= end:
            raise ValueError(f"market window must not wrap midnight, split it instead: {chunk!r}")
        windows.append((start, end))
    if not windows:
        raise ValueError("at least one market window is required")
    return windows


class MarketHours:
    """Trading-window predicate evaluated in the scheduler's local time zone."""

    def __init__(
        self,
        windows: list[tuple[int, int]],
        tz: ZoneInfo,
        trading_weekdays: tuple[int, ...] = WEEKDAYS,
    ) -> None:
        self.windows = list(windows)
        self.tz = tz
        self.trading_weekdays = set(trading_weekdays)

    def _localize(self, now: datetime | None) -> datetime:
        current = now or datetime.now(self.tz)
        if current.tzinfo is None:
            return current.replace(tzinfo=self.tz)
        return current.astimezone(self.tz)

    def is_open(self, now: datetime | None = None) -> bool:
        local = self._localize(now)
        if local.weekday() not in self.trading_weekdays:
            return False
        minute_of_day = local.hour * 60 + local.minute
        return any(start <= minute_of_day < end for start, end in self.windows)

    __call__ = is_open
