from __future__ import annotations

import math
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Protocol

from stockbot.errors import InvalidPriceFormatError, NoClosingPriceError, StorageError
from stockbot.schemas.price import PriceSample


def price_to_float(symbol: str, raw: str) -> float:
    try:
        value = float(str(raw).replace(",", "").strip())
    except (TypeError, ValueError) as exc:
        raise InvalidPriceFormatError(f"invalid stored price for {symbol}: {raw!r}") from exc
    if not math.isfinite(value):
        raise InvalidPriceFormatError(f"invalid stored price for {symbol}: {raw!r}")
    return value


class PriceStore(Protocol):
    def insert(self, sample: PriceSample) -> None: ...

    def latest_closing(self, symbol: str) -> float: ...

    def history(self, symbol: str, days: int, now: datetime | None = None) -> list[PriceSample]: ...


class InMemoryPriceStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, list[PriceSample]] = {}

    def insert(self, sample: PriceSample) -> None:
        with self._lock:
            self._rows.setdefault(sample.symbol, []).append(sample)

    def latest_closing(self, symbol: str) -> float:
        with self._lock:
            closings = [row for row in self._rows.get(symbol, []) if row.is_closing]
        if not closings:
            raise NoClosingPriceError(symbol)
        latest = max(closings, key=lambda row: row.timestamp)
        return price_to_float(symbol, latest.price)

    def history(self, symbol: str, days: int, now: datetime | None = None) -> list[PriceSample]:
        since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        with self._lock:
            rows = [r for r in self._rows.get(symbol, []) if r.is_closing and r.timestamp >= since]
        return sorted(rows, key=lambda row: row.timestamp)

    def all(self, symbol: str) -> list[PriceSample]:
        with self._lock:
            return list(self._rows.get(symbol, []))


class SqlitePriceStore:
    """File-backed price history. One short-lived connection per call."""

    _SCHEMA = (
        "CREATE TABLE IF NOT EXISTS prices ("
        " id INTEGER PRIMARY KEY AUTOINCREMENT,"
        " symbol TEXT NOT NULL,"
        " price TEXT NOT NULL,"
        " timestamp TEXT NOT NULL,"
        " is_closing INTEGER NOT NULL DEFAULT 0)",
        "CREATE INDEX IF NOT EXISTS idx_prices_symbol_closing_ts"
        " ON prices (symbol, is_closing, timestamp)",
    )

    def __init__(self, db_path: str | Path, timeout_sec: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.timeout_sec = timeout_sec
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            for statement in self._SCHEMA:
                conn.execute(statement)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout_sec)
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open {self.db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"query failed: {exc}") from exc
        finally:
            conn.close()

    @staticmethod
    def _utc(ts: datetime) -> str:
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc).isoformat()

    def insert(self, sample: PriceSample) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO prices (symbol, price, timestamp, is_closing) VALUES (?, ?, ?, ?)",
                (sample.symbol, sample.price, self._utc(sample.timestamp), int(sample.is_closing)),
            )
        print(
            f"[STORE][insert] symbol={sample.symbol} price={sample.price} closing={sample.is_closing}",
            flush=True,
        )

    def latest_closing(self, symbol: str) -> float:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT price FROM prices WHERE symbol = ? AND is_closing = 1"
                " ORDER BY timestamp DESC LIMIT 1",
                (symbol,),
            ).fetchone()
        if row is None:
            raise NoClosingPriceError(symbol)
        return price_to_float(symbol, row[0])

    def history(self, symbol: str, days: int, now: datetime | None = None) -> list[PriceSample]:
        since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT symbol, price, timestamp, is_closing FROM prices"
                " WHERE symbol = ? AND is_closing = 1 AND timestamp >= ?"
                " ORDER BY timestamp ASC",
                (symbol, self._utc(since)),
            ).fetchall()
        return [
            PriceSample(
                symbol=r[0],
                price=r[1],
                timestamp=datetime.fromisoformat(r[2]),
                is_closing=bool(r[3]),
            )
            for r in rows
        ]
