from __future__ import annotations

import threading
from datetime import datetime
from zoneinfo import ZoneInfo


class AlertGate:
    """Per-day, per-symbol alert admission.

    Entries are compared by calendar date in ``tz``, not by a rolling 24h
    window. ``reset_all`` swaps in a fresh dict so readers see either the old
    map or the empty one.
    """

    def __init__(self, tz: ZoneInfo) -> None:
        self.tz = tz
        self._lock = threading.Lock()
        self._sent: dict[str, datetime] = {}

    def _now(self, now: datetime | None) -> datetime:
        if now is None:
            return datetime.now(self.tz)
        if now.tzinfo is None:
            return now.replace(tzinfo=self.tz)
        return now.astimezone(self.tz)

    def _can_send_locked(self, symbol: str, now: datetime) -> bool:
        last = self._sent.get(symbol)
        if last is None:
            return True
        return last.astimezone(self.tz).date() != now.date()

    def can_send(self, symbol: str, now: datetime | None = None) -> bool:
        current = self._now(now)
        with self._lock:
            return self._can_send_locked(symbol, current)

    def mark_sent(self, symbol: str, now: datetime | None = None) -> None:
        current = self._now(now)
        with self._lock:
            self._sent[symbol] = current

    def admit(self, symbol: str, now: datetime | None = None) -> bool:
        current = self._now(now)
        with self._lock:
            if not self._can_send_locked(symbol, current):
                return False
            self._sent[symbol] = current
            return True

    def reset_all(self) -> None:
        with self._lock:
            self._sent = {}

    def snapshot(self) -> dict[str, datetime]:
        with self._lock:
            return dict(self._sent)
