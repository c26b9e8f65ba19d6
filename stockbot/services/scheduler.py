from __future__ import annotations

import asyncio
from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

from stockbot.errors import MessageSendError, StorageError
from stockbot.schemas.price import PriceAlert
from stockbot.schemas.scheduler import DAILY_REPORT_DUE, IDLE, REALTIME_SWEEP_DUE, SchedulerStatus
from stockbot.services.alert_gate import AlertGate
from stockbot.services.fetch_orchestrator import FetchOrchestrator, successful_prices
from stockbot.services.price_change import PriceChangeEvaluator

_TICK_SLACK_SEC = 0.5


class PriceScheduler:
    """Drives the daily report and the market-hours price sweep from one tick loop.

    Transitions are serialized by ``_transition_lock``; ``last_processed_date``
    is only written while holding it.
    """

    def __init__(
        self,
        *,
        orchestrator: FetchOrchestrator,
        evaluator: PriceChangeEvaluator,
        alert_gate: AlertGate,
        store,
        messenger,
        symbols: list[str],
        tz: ZoneInfo,
        market_open: Callable[[datetime], bool],
        check_interval_min: int = 15,
        daily_report_hour: int = 6,
        realtime_interval_min: int = 30,
        stop_timeout_sec: float = 5.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.evaluator = evaluator
        self.alert_gate = alert_gate
        self.store = store
        self.messenger = messenger
        self.symbols = list(symbols)
        self.tz = tz
        self.market_open = market_open
        self.check_interval_min = check_interval_min
        self.daily_report_hour = daily_report_hour
        self.realtime_interval_min = realtime_interval_min
        self.stop_timeout_sec = stop_timeout_sec
        self.clock = clock or (lambda: datetime.now(self.tz))

        self.last_processed_date: date | None = None
        self.last_tick_at: datetime | None = None
        self.last_transition: str | None = None
        self._transition_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._counters = {
            "daily_reports": 0,
            "realtime_sweeps": 0,
            "skipped_cycles": 0,
            "alerts_sent": 0,
            "send_failures": 0,
            "tick_errors": 0,
        }

    def _local(self, now: datetime | None) -> datetime:
        current = now or self.clock()
        if current.tzinfo is None:
            return current.replace(tzinfo=self.tz)
        return current.astimezone(self.tz)

    def decide(self, now: datetime | None = None) -> str:
        current = self._local(now)
        if (
            current.hour == self.daily_report_hour
            and current.minute < self.check_interval_min
            and self.last_processed_date != current.date()
        ):
            return DAILY_REPORT_DUE
        if self.market_open(current) and current.minute % self.realtime_interval_min == 0:
            return REALTIME_SWEEP_DUE
        return IDLE

    def seconds_until_next_tick(self, now: datetime | None = None) -> float:
        current = self._local(now)
        interval = self.check_interval_min * 60
        elapsed = current.hour * 3600 + current.minute * 60 + current.second + current.microsecond / 1e6
        return interval - (elapsed % interval) + _TICK_SLACK_SEC

    async def tick(self, now: datetime | None = None) -> str:
        current = self._local(now)
        async with self._transition_lock:
            self.last_tick_at = current
            state = self.decide(current)
            print(f"[SCHED][tick] at={current.isoformat()} state={state}", flush=True)
            try:
                if state == DAILY_REPORT_DUE:
                    await self._daily_report(current)
                elif state == REALTIME_SWEEP_DUE:
                    await self._realtime_sweep(current)
            except Exception as exc:
                self._counters["tick_errors"] += 1
                print(f"[SCHED][tick_error] state={state} kind={type(exc).__name__} error={exc}", flush=True)
        return state

    async def run_daily_report(self, now: datetime | None = None) -> bool:
        async with self._transition_lock:
            return await self._daily_report(self._local(now))

    async def run_realtime_sweep(self, now: datetime | None = None) -> list[PriceAlert]:
        async with self._transition_lock:
            return await self._realtime_sweep(self._local(now))

    async def _daily_report(self, now: datetime) -> bool:
        outcomes = await self.orchestrator.fetch_all(self.symbols, closing=True)
        prices = successful_prices(outcomes)
        if not prices:
            self._counters["skipped_cycles"] += 1
            print("[SCHED][daily_report_skipped] reason=ALL_FETCH_FAILED", flush=True)
            return False

        for symbol in sorted(prices):
            try:
                await asyncio.to_thread(self.store.insert, outcomes[symbol].sample)
            except StorageError as exc:
                print(f"[STORE][insert_failed] symbol={symbol} error={exc}", flush=True)

        try:
            await asyncio.to_thread(self.messenger.send_summary, prices)
        except MessageSendError as exc:
            self._counters["send_failures"] += 1
            print(f"[MSG][summary_failed] error={exc}", flush=True)

        # marked even when delivery failed; delivery is at-most-once
        self.last_processed_date = now.date()
        self.alert_gate.reset_all()
        self.last_transition = DAILY_REPORT_DUE
        self._counters["daily_reports"] += 1
        print(
            f"[SCHED][daily_report_done] date={now.date().isoformat()} "
            f"reported={len(prices)} missing={len(outcomes) - len(prices)}",
            flush=True,
        )
        return True

    def _evaluate_symbol(self, symbol: str, price: str, now: datetime) -> PriceAlert | None:
        if not self.alert_gate.can_send(symbol, now):
            return None
        alert = self.evaluator.evaluate(symbol, price, now)
        if alert is None:
            return None
        if not self.alert_gate.admit(symbol, now):
            return None
        return alert

    async def _realtime_sweep(self, now: datetime) -> list[PriceAlert]:
        outcomes = await self.orchestrator.fetch_all(self.symbols)
        prices = successful_prices(outcomes)
        if not prices:
            self._counters["skipped_cycles"] += 1
            print("[SCHED][realtime_sweep_skipped] reason=ALL_FETCH_FAILED", flush=True)
            return []

        results = await asyncio.gather(
            *(asyncio.to_thread(self._evaluate_symbol, symbol, price, now) for symbol, price in prices.items())
        )
        alerts = [alert for alert in results if alert is not None]

        if alerts:
            try:
                await asyncio.to_thread(self.messenger.send_alerts, alerts)
                self._counters["alerts_sent"] += len(alerts)
            except MessageSendError as exc:
                self._counters["send_failures"] += 1
                print(f"[MSG][alerts_failed] count={len(alerts)} error={exc}", flush=True)

        self.last_transition = REALTIME_SWEEP_DUE
        self._counters["realtime_sweeps"] += 1
        print(
            f"[SCHED][realtime_sweep_done] fetched={len(prices)} alerts={len(alerts)}",
            flush=True,
        )
        return alerts

    async def run_forever(self) -> None:
        print(
            f"[SCHED][loop_start] interval_min={self.check_interval_min} "
            f"report_hour={self.daily_report_hour} tz={self.tz}",
            flush=True,
        )
        await self.tick()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.seconds_until_next_tick())
            except asyncio.TimeoutError:
                await self.tick()
        print("[SCHED][loop_stop]", flush=True)

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_forever(), name="price-scheduler")
        return self._task

    async def stop(self) -> None:
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(task, timeout=self.stop_timeout_sec)
        except asyncio.TimeoutError:
            print("[SCHED][stop_timeout] cycle cancelled", flush=True)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            state=self.decide(),
            running=self.running,
            timezone=str(self.tz),
            last_processed_date=self.last_processed_date,
            last_tick_at=self.last_tick_at,
            last_transition=self.last_transition,
            **self._counters,
        )
