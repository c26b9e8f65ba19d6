import asyncio
import unittest
from datetime import date, datetime
from zoneinfo import ZoneInfo

from stockbot.errors import (
    FetchTimeoutError,
    MessageSendError,
    NoClosingPriceError,
    PriceFetchFailedError,
    QuoteSourceUnavailableError,
)
from stockbot.schemas.scheduler import DAILY_REPORT_DUE, IDLE, REALTIME_SWEEP_DUE
from stockbot.services.alert_gate import AlertGate
from stockbot.services.fetch_orchestrator import FetchOrchestrator
from stockbot.services.market_hours import MarketHours, parse_windows
from stockbot.services.price_change import PriceChangeEvaluator
from stockbot.services.price_store import InMemoryPriceStore
from stockbot.services.scheduler import PriceScheduler

TAIPEI = ZoneInfo("Asia/Taipei")


def at(day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
    # January 2026: the 5th is a Monday, the 10th a Saturday
    return datetime(2026, 1, day, hour, minute, second, tzinfo=TAIPEI)


class ScriptedQuoteSource:
    def __init__(self, prices: dict[str, str], failing: set[str] | None = None, unavailable: bool = False) -> None:
        self.prices = prices
        self.failing = failing or set()
        self.unavailable = unavailable
        self.fetches: list[str] = []

    async def start(self) -> None:
        if self.unavailable:
            raise QuoteSourceUnavailableError("browser launch failed")

    async def fetch(self, symbol: str, deadline_sec: float | None = None) -> str:
        self.fetches.append(symbol)
        await asyncio.sleep(0)
        if symbol in self.failing:
            raise PriceFetchFailedError(symbol, 3, FetchTimeoutError("timeout"))
        return self.prices[symbol]


class RecordingMessenger:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.summaries: list[dict[str, str]] = []
        self.alert_batches: list[list] = []

    def send_summary(self, prices: dict[str, str]) -> None:
        self.summaries.append(dict(prices))
        if self.fail:
            raise MessageSendError("telegram returned status code 502")

    def send_alerts(self, alerts) -> None:
        self.alert_batches.append(list(alerts))
        if self.fail:
            raise MessageSendError("telegram returned status code 502")


def build_scheduler(source, messenger=None, clock=None, symbols=("AAPL", "GOOGL")):
    store = InMemoryPriceStore()
    gate = AlertGate(TAIPEI)
    scheduler = PriceScheduler(
        orchestrator=FetchOrchestrator(quote_source=source, max_concurrency=5),
        evaluator=PriceChangeEvaluator(store=store, threshold_pct=5.0),
        alert_gate=gate,
        store=store,
        messenger=messenger or RecordingMessenger(),
        symbols=list(symbols),
        tz=TAIPEI,
        market_open=MarketHours(parse_windows("21:30-24:00,00:00-04:00"), TAIPEI),
        clock=clock,
    )
    return scheduler, store, gate


class DecideTest(unittest.TestCase):
    def setUp(self):
        self.scheduler, _, _ = build_scheduler(ScriptedQuoteSource({}))

    def test_daily_report_due_in_first_interval_of_report_hour(self):
        self.assertEqual(self.scheduler.decide(at(5, 6, 0)), DAILY_REPORT_DUE)
        self.assertEqual(self.scheduler.decide(at(5, 6, 5)), DAILY_REPORT_DUE)
        self.assertEqual(self.scheduler.decide(at(5, 6, 20)), IDLE)

    def test_daily_report_not_repeated_on_same_date(self):
        self.scheduler.last_processed_date = date(2026, 1, 5)

        self.assertEqual(self.scheduler.decide(at(5, 6, 5)), IDLE)
        self.assertEqual(self.scheduler.decide(at(6, 6, 5)), DAILY_REPORT_DUE)

    def test_sweep_due_on_interval_boundaries_while_market_open(self):
        self.assertEqual(self.scheduler.decide(at(5, 22, 0)), REALTIME_SWEEP_DUE)
        self.assertEqual(self.scheduler.decide(at(5, 22, 30)), REALTIME_SWEEP_DUE)
        self.assertEqual(self.scheduler.decide(at(6, 3, 30)), REALTIME_SWEEP_DUE)
        self.assertEqual(self.scheduler.decide(at(5, 22, 15)), IDLE)

    def test_idle_outside_market_hours(self):
        self.assertEqual(self.scheduler.decide(at(5, 12, 0)), IDLE)
        self.assertEqual(self.scheduler.decide(at(10, 22, 0)), IDLE)

    def test_next_tick_is_aligned_to_wall_clock(self):
        self.assertAlmostEqual(self.scheduler.seconds_until_next_tick(at(5, 22, 7, 30)), 450.5)
        self.assertAlmostEqual(self.scheduler.seconds_until_next_tick(at(5, 22, 0)), 900.5)


class PriceSchedulerTest(unittest.IsolatedAsyncioTestCase):
    async def test_daily_report_stores_closings_and_skips_failed_symbols(self):
        messenger = RecordingMessenger()
        source = ScriptedQuoteSource({"GOOGL": "140.00"}, failing={"AAPL"})
        scheduler, store, gate = build_scheduler(source, messenger)
        gate.mark_sent("GOOGL", at(5, 5, 0))

        state = await scheduler.tick(at(5, 6, 0))

        self.assertEqual(state, DAILY_REPORT_DUE)
        self.assertEqual(messenger.summaries, [{"GOOGL": "140.00"}])
        self.assertEqual(store.latest_closing("GOOGL"), 140.0)
        with self.assertRaises(NoClosingPriceError):
            store.latest_closing("AAPL")
        self.assertEqual(scheduler.last_processed_date, date(2026, 1, 5))
        self.assertEqual(gate.snapshot(), {})
        status = scheduler.status()
        self.assertEqual(status.daily_reports, 1)
        self.assertEqual(status.last_transition, DAILY_REPORT_DUE)

    async def test_report_runs_once_per_date(self):
        messenger = RecordingMessenger()
        scheduler, _, _ = build_scheduler(ScriptedQuoteSource({"AAPL": "180", "GOOGL": "140"}), messenger)

        self.assertEqual(await scheduler.tick(at(5, 6, 0)), DAILY_REPORT_DUE)
        self.assertEqual(await scheduler.tick(at(5, 6, 5)), IDLE)

        self.assertEqual(len(messenger.summaries), 1)

    async def test_all_fetches_failing_skips_report_without_marking_date(self):
        messenger = RecordingMessenger()
        source = ScriptedQuoteSource({}, failing={"AAPL", "GOOGL"})
        scheduler, _, _ = build_scheduler(source, messenger)

        self.assertFalse(await scheduler.run_daily_report(at(5, 6, 0)))

        self.assertEqual(messenger.summaries, [])
        self.assertIsNone(scheduler.last_processed_date)
        self.assertEqual(scheduler.status().skipped_cycles, 1)
        # still due on the next tick in the window
        self.assertEqual(scheduler.decide(at(5, 6, 5)), DAILY_REPORT_DUE)

    async def test_failed_summary_delivery_still_marks_date(self):
        messenger = RecordingMessenger(fail=True)
        scheduler, store, _ = build_scheduler(ScriptedQuoteSource({"AAPL": "180", "GOOGL": "140"}), messenger)

        self.assertTrue(await scheduler.run_daily_report(at(5, 6, 0)))

        self.assertEqual(scheduler.last_processed_date, date(2026, 1, 5))
        self.assertEqual(scheduler.status().send_failures, 1)
        self.assertEqual(store.latest_closing("AAPL"), 180.0)

    async def test_sweep_alerts_once_per_symbol_per_day(self):
        messenger = RecordingMessenger()
        source = ScriptedQuoteSource({"GOOGL": "140.00"}, failing={"AAPL"})
        scheduler, _, gate = build_scheduler(source, messenger)
        await scheduler.tick(at(5, 6, 0))

        source.prices["GOOGL"] = "150.00"
        state = await scheduler.tick(at(5, 22, 0))

        self.assertEqual(state, REALTIME_SWEEP_DUE)
        self.assertEqual(len(messenger.alert_batches), 1)
        (alert,) = messenger.alert_batches[0]
        self.assertEqual(alert.symbol, "GOOGL")
        self.assertAlmostEqual(alert.percent_change, 7.142857, places=5)
        self.assertFalse(gate.can_send("GOOGL", at(5, 22, 30)))
        self.assertTrue(gate.can_send("AAPL", at(5, 22, 30)))

        await scheduler.tick(at(5, 22, 30))

        self.assertEqual(len(messenger.alert_batches), 1)
        status = scheduler.status()
        self.assertEqual(status.realtime_sweeps, 2)
        self.assertEqual(status.alerts_sent, 1)

    async def test_sweep_without_qualifying_moves_sends_nothing(self):
        messenger = RecordingMessenger()
        source = ScriptedQuoteSource({"AAPL": "100.00", "GOOGL": "140.00"})
        scheduler, _, _ = build_scheduler(source, messenger)
        await scheduler.run_daily_report(at(5, 6, 0))

        source.prices.update({"AAPL": "102.00", "GOOGL": "141.00"})
        alerts = await scheduler.run_realtime_sweep(at(5, 22, 0))

        self.assertEqual(alerts, [])
        self.assertEqual(messenger.alert_batches, [])
        self.assertEqual(scheduler.status().realtime_sweeps, 1)

    async def test_failed_alert_delivery_keeps_gate_entries(self):
        source = ScriptedQuoteSource({"AAPL": "100.00", "GOOGL": "140.00"})
        scheduler, _, gate = build_scheduler(source, RecordingMessenger())
        await scheduler.run_daily_report(at(5, 6, 0))
        scheduler.messenger = RecordingMessenger(fail=True)

        source.prices["AAPL"] = "90.00"
        alerts = await scheduler.run_realtime_sweep(at(5, 22, 0))

        self.assertEqual([a.symbol for a in alerts], ["AAPL"])
        self.assertEqual(scheduler.status().send_failures, 1)
        self.assertFalse(gate.can_send("AAPL", at(5, 23, 0)))

    async def test_unavailable_source_is_counted_as_tick_error(self):
        scheduler, _, _ = build_scheduler(ScriptedQuoteSource({}, unavailable=True))

        state = await scheduler.tick(at(5, 6, 0))

        self.assertEqual(state, DAILY_REPORT_DUE)
        self.assertIsNone(scheduler.last_processed_date)
        self.assertEqual(scheduler.status().tick_errors, 1)

    async def test_idle_tick_fetches_nothing(self):
        source = ScriptedQuoteSource({"AAPL": "1", "GOOGL": "2"})
        scheduler, _, _ = build_scheduler(source)

        self.assertEqual(await scheduler.tick(at(5, 12, 0)), IDLE)

        self.assertEqual(source.fetches, [])
        self.assertEqual(scheduler.last_tick_at, at(5, 12, 0))

    async def test_start_and_stop_background_loop(self):
        scheduler, _, _ = build_scheduler(ScriptedQuoteSource({}), clock=lambda: at(5, 12, 0))

        scheduler.start()
        await asyncio.sleep(0.05)

        self.assertTrue(scheduler.running)
        self.assertEqual(scheduler.last_tick_at, at(5, 12, 0))
        self.assertTrue(scheduler.status().running)

        await scheduler.stop()

        self.assertFalse(scheduler.running)
        await scheduler.stop()


if __name__ == "__main__":
    unittest.main()
