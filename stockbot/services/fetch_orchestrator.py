from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from stockbot.errors import EmptySymbolSetError
from stockbot.schemas.price import FetchOutcome, PriceSample


def unique_symbols(symbols: Iterable[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for symbol in symbols:
        value = str(symbol).strip()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def successful_prices(outcomes: dict[str, FetchOutcome]) -> dict[str, str]:
    return {symbol: o.price for symbol, o in outcomes.items() if o.ok}


class FetchOrchestrator:
    """Fan-out/fan-in price collection with a bounded number of fetches in flight."""

    def __init__(
        self,
        *,
        quote_source,
        max_concurrency: int = 5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.quote_source = quote_source
        self.max_concurrency = max_concurrency
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.in_flight = 0
        self.peak_in_flight = 0
        self.cycles = 0
        self.last_cycle_success = 0
        self.last_cycle_failed = 0

    async def _fetch_one(
        self, symbol: str, slots: asyncio.Semaphore, closing: bool, deadline_sec: float | None
    ) -> FetchOutcome:
        async with slots:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                price = await self.quote_source.fetch(symbol, deadline_sec)
            except Exception as exc:
                print(f"[FETCH][symbol_failed] symbol={symbol} kind={type(exc).__name__} error={exc}", flush=True)
                return FetchOutcome(symbol=symbol, error=str(exc), error_kind=type(exc).__name__)
            finally:
                self.in_flight -= 1

        sample = PriceSample(symbol=symbol, price=price, timestamp=self.clock(), is_closing=closing)
        return FetchOutcome(symbol=symbol, price=price, sample=sample)

    async def fetch_all(
        self,
        symbols: Iterable[str],
        max_concurrency: int | None = None,
        *,
        closing: bool = False,
        deadline_sec: float | None = None,
    ) -> dict[str, FetchOutcome]:
        targets = unique_symbols(symbols)
        if not targets:
            raise EmptySymbolSetError("symbol set is empty")
        limit = self.max_concurrency if max_concurrency is None else max_concurrency
        if limit < 1:
            raise ValueError("max_concurrency must be >= 1")
        if deadline_sec is not None and deadline_sec <= 0:
            raise ValueError("deadline_sec must be > 0")

        # launch failure means no fetch can run at all
        await self.quote_source.start()

        slots = asyncio.Semaphore(limit)
        results = await asyncio.gather(*(self._fetch_one(s, slots, closing, deadline_sec) for s in targets))
        outcomes = {o.symbol: o for o in results}

        ok_count = sum(1 for o in results if o.ok)
        self.cycles += 1
        self.last_cycle_success = ok_count
        self.last_cycle_failed = len(results) - ok_count
        print(
            "[FETCH][cycle_done] "
            f"target_count={len(targets)} ok_count={ok_count} failed_count={len(results) - ok_count} "
            f"limit={limit} closing={closing}",
            flush=True,
        )
        return outcomes

    def metrics(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "in_flight": self.in_flight,
            "peak_in_flight": self.peak_in_flight,
            "max_concurrency": self.max_concurrency,
            "last_cycle_success": self.last_cycle_success,
            "last_cycle_failed": self.last_cycle_failed,
        }
