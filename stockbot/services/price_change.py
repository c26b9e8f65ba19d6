from __future__ import annotations

import math
from datetime import datetime, timezone

from stockbot.errors import NoClosingPriceError, StorageError
from stockbot.schemas.price import PriceAlert, PriceSample
from stockbot.services.price_store import PriceStore


def parse_price(raw: str) -> float:
    """Parse a quoted price such as ``"1,234.50"`` or ``"$98.10"``."""
    if raw is None:
        raise ValueError("missing price")
    text = str(raw).strip().lstrip("$").replace(",", "").strip()
    if not text:
        raise ValueError("empty price")
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"non-finite price: {raw!r}")
    return value


def percent_change(previous: float, current: float) -> float:
    return (current - previous) / previous * 100


class PriceChangeEvaluator:
    def __init__(self, *, store: PriceStore, threshold_pct: float = 5.0) -> None:
        self.store = store
        self.threshold_pct = threshold_pct

    def evaluate(self, symbol: str, current_price: str, now: datetime | None = None) -> PriceAlert | None:
        try:
            current = parse_price(current_price)
        except ValueError as exc:
            print(f"[ALERT][parse_error] symbol={symbol} raw={current_price!r} error={exc}", flush=True)
            return None

        try:
            previous = self.store.latest_closing(symbol)
        except NoClosingPriceError:
            print(f"[ALERT][no_baseline] symbol={symbol}", flush=True)
            return None
        except StorageError as exc:
            print(f"[ALERT][baseline_error] symbol={symbol} error={exc}", flush=True)
            return None

        if previous == 0:
            return None

        change = percent_change(previous, current)
        if abs(change) < self.threshold_pct:
            return None

        ts = now or datetime.now(timezone.utc)
        try:
            self.store.insert(PriceSample(symbol=symbol, price=current_price, timestamp=ts, is_closing=False))
        except StorageError as exc:
            print(f"[ALERT][persist_error] symbol={symbol} error={exc}", flush=True)

        print(
            f"[ALERT][qualified] symbol={symbol} previous={previous:.2f} current={current:.2f} "
            f"change_pct={change:.2f} threshold={self.threshold_pct}",
            flush=True,
        )
        return PriceAlert(
            symbol=symbol,
            previous_price=previous,
            current_price=current,
            percent_change=change,
            timestamp=ts,
        )
