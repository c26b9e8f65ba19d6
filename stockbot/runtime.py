from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from stockbot.config.settings import Settings
from stockbot.integrations.line import LineMessenger
from stockbot.integrations.quote_browser import BrowserQuoteSource
from stockbot.integrations.telegram import TelegramMessenger
from stockbot.services.alert_gate import AlertGate
from stockbot.services.fetch_orchestrator import FetchOrchestrator
from stockbot.services.market_hours import MarketHours
from stockbot.services.price_change import PriceChangeEvaluator
from stockbot.services.price_store import InMemoryPriceStore, SqlitePriceStore
from stockbot.services.scheduler import PriceScheduler


@dataclass
class Runtime:
    settings: Settings
    quote_source: Any
    orchestrator: FetchOrchestrator
    alert_gate: AlertGate
    store: Any
    evaluator: PriceChangeEvaluator
    messenger: Any
    scheduler: PriceScheduler


def build_messenger(settings: Settings):
    if settings.MESSENGER == "line":
        return LineMessenger(settings.LINE_CHANNEL_ACCESS_TOKEN)
    return TelegramMessenger(settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_CHAT_ID)


def build_store(settings: Settings):
    if settings.STORAGE_BACKEND == "memory":
        return InMemoryPriceStore()
    return SqlitePriceStore(settings.SQLITE_PATH)


def build_runtime(settings: Settings) -> Runtime:
    tz = settings.tz
    quote_source = BrowserQuoteSource(
        url_template=settings.QUOTE_URL_TEMPLATE,
        price_selector=settings.PRICE_SELECTOR,
        fetch_timeout_sec=settings.FETCH_TIMEOUT_SEC,
        element_timeout_sec=settings.PRICE_ELEMENT_TIMEOUT_SEC,
        max_retries=settings.FETCH_MAX_RETRIES,
        retry_interval_sec=settings.FETCH_RETRY_INTERVAL_SEC,
        headless=settings.BROWSER_HEADLESS,
        javascript_enabled=settings.BROWSER_JAVASCRIPT_ENABLED,
        user_agent=settings.BROWSER_USER_AGENT,
    )
    orchestrator = FetchOrchestrator(quote_source=quote_source, max_concurrency=settings.FETCH_MAX_CONCURRENCY)
    store = build_store(settings)
    alert_gate = AlertGate(tz)
    evaluator = PriceChangeEvaluator(store=store, threshold_pct=settings.ALERT_THRESHOLD_PCT)
    messenger = build_messenger(settings)
    scheduler = PriceScheduler(
        orchestrator=orchestrator,
        evaluator=evaluator,
        alert_gate=alert_gate,
        store=store,
        messenger=messenger,
        symbols=settings.STOCKBOT_SYMBOLS,
        tz=tz,
        market_open=MarketHours(settings.MARKET_WINDOWS, tz),
        check_interval_min=settings.CHECK_INTERVAL_MIN,
        daily_report_hour=settings.DAILY_REPORT_HOUR,
        realtime_interval_min=settings.REALTIME_INTERVAL_MIN,
    )
    return Runtime(
        settings=settings,
        quote_source=quote_source,
        orchestrator=orchestrator,
        alert_gate=alert_gate,
        store=store,
        evaluator=evaluator,
        messenger=messenger,
        scheduler=scheduler,
    )
