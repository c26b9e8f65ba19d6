from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from stockbot.errors import (
    ElementNotFoundError,
    FetchError,
    FetchTimeoutError,
    NavigationError,
    PriceFetchFailedError,
    QuoteSourceClosedError,
    QuoteSourceUnavailableError,
)

_LAUNCH_ARGS = [
    "--disable-gpu",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--no-first-run",
    "--no-default-browser-check",
    "--no-zygote",
    "--blink-settings=imagesEnabled=false",
]


class BrowserQuoteSource:
    """Scrapes quote pages through one shared headless Chromium.

    The browser is launched on first use and reused by every fetch; each
    attempt gets its own browser context, which is always closed.
    """

    def __init__(
        self,
        *,
        url_template: str = "https://finance.yahoo.com/quote/{symbol}/",
        price_selector: str = 'span[data-testid="qsp-price"]',
        fetch_timeout_sec: float = 120.0,
        element_timeout_sec: float = 30.0,
        max_retries: int = 3,
        retry_interval_sec: float = 5.0,
        headless: bool = True,
        javascript_enabled: bool = False,
        user_agent: str | None = None,
        drain_timeout_sec: float = 10.0,
        launcher: Callable[[], Awaitable[tuple[Any, Any]]] | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.url_template = url_template
        self.price_selector = price_selector
        self.fetch_timeout_sec = fetch_timeout_sec
        self.element_timeout_sec = element_timeout_sec
        self.max_retries = max_retries
        self.retry_interval_sec = retry_interval_sec
        self.headless = headless
        self.javascript_enabled = javascript_enabled
        self.user_agent = user_agent
        self.drain_timeout_sec = drain_timeout_sec
        self._launcher = launcher or self._default_launcher
        self._sleep = sleep_fn

        self._playwright: Any = None
        self._browser: Any = None
        self._start_lock = asyncio.Lock()
        self._close_lock = asyncio.Lock()
        self._closed = False
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

        self.launches = 0
        self.closes = 0
        self.attempts = 0
        self.retries = 0
        self.successes = 0
        self.failures = 0
        self.contexts_opened = 0
        self.contexts_closed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def quote_url(self, symbol: str) -> str:
        return self.url_template.format(symbol=symbol)

    async def _default_launcher(self) -> tuple[Any, Any]:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(headless=self.headless, args=_LAUNCH_ARGS)
        except BaseException:
            await playwright.stop()
            raise
        return playwright, browser

    async def start(self) -> Any:
        if self._closed:
            raise QuoteSourceClosedError("quote source is closed")
        if self._browser is not None and self._browser.is_connected():
            return self._browser
        async with self._start_lock:
            if self._closed:
                raise QuoteSourceClosedError("quote source is closed")
            if self._browser is not None and not self._browser.is_connected():
                await self._discard_disconnected()
            if self._browser is None:
                try:
                    self._playwright, self._browser = await self._launcher()
                except Exception as exc:
                    print(f"[BROWSER][launch_failed] error={exc}", flush=True)
                    raise QuoteSourceUnavailableError(f"browser launch failed: {exc}") from exc
                self.launches += 1
                print(f"[BROWSER][launched] headless={self.headless}", flush=True)
        return self._browser

    async def _discard_disconnected(self) -> None:
        # caller holds _start_lock
        playwright = self._playwright
        self._browser = None
        self._playwright = None
        print("[BROWSER][disconnected] relaunching", flush=True)
        if playwright is not None:
            try:
                await playwright.stop()
            except PlaywrightError as exc:
                print(f"[BROWSER][stop_error] error={exc}", flush=True)

    async def close(self) -> bool:
        """Release the shared browser. Returns False if it was already released."""
        async with self._close_lock:
            if self._closed:
                return False
            self._closed = True

        if self._in_flight:
            print(f"[BROWSER][drain_wait] in_flight={self._in_flight}", flush=True)
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=self.drain_timeout_sec)
            except asyncio.TimeoutError:
                print(f"[BROWSER][drain_timeout] in_flight={self._in_flight}", flush=True)

        async with self._start_lock:
            browser, playwright = self._browser, self._playwright
            self._browser = None
            self._playwright = None

        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as exc:
                print(f"[BROWSER][close_error] error={exc}", flush=True)
        if playwright is not None:
            await playwright.stop()
        self.closes += 1
        print("[BROWSER][closed]", flush=True)
        return True

    async def _attempt(self, symbol: str, deadline_sec: float) -> str:
        browser = await self.start()
        try:
            context = await browser.new_context(
                user_agent=self.user_agent,
                java_script_enabled=self.javascript_enabled,
            )
        except PlaywrightError as exc:
            raise NavigationError(f"cannot open browser context for {symbol}: {exc}") from exc
        self.contexts_opened += 1

        try:
            page = await context.new_page()
            page.set_default_timeout(deadline_sec * 1000)
            try:
                await page.goto(self.quote_url(symbol), wait_until="domcontentloaded")
            except PlaywrightTimeoutError as exc:
                raise FetchTimeoutError(f"navigation timed out for {symbol}") from exc
            except PlaywrightError as exc:
                raise NavigationError(f"navigation failed for {symbol}: {exc}") from exc

            locator = page.locator(self.price_selector).first
            try:
                await locator.wait_for(state="visible", timeout=self.element_timeout_sec * 1000)
                text = await locator.inner_text()
            except PlaywrightTimeoutError as exc:
                raise ElementNotFoundError(f"price element not found for {symbol}") from exc
            except PlaywrightError as exc:
                raise NavigationError(f"page error for {symbol}: {exc}") from exc

            price = (text or "").strip()
            if not price:
                raise ElementNotFoundError(f"price element empty for {symbol}")
            return price
        finally:
            try:
                await context.close()
            except PlaywrightError as exc:
                print(f"[BROWSER][context_close_error] symbol={symbol} error={exc}", flush=True)
            self.contexts_closed += 1

    async def fetch(self, symbol: str, deadline_sec: float | None = None) -> str:
        if self._closed:
            raise QuoteSourceClosedError("quote source is closed")
        deadline = self.fetch_timeout_sec if deadline_sec is None else deadline_sec
        if deadline <= 0:
            raise ValueError("deadline_sec must be > 0")
        await self.start()

        self._in_flight += 1
        self._idle.clear()
        last_error: FetchError | None = None
        try:
            for attempt in range(1, self.max_retries + 1):
                if attempt > 1:
                    self.retries += 1
                    print(f"[FETCH][retry] symbol={symbol} attempt={attempt}", flush=True)
                    await self._sleep(self.retry_interval_sec)

                self.attempts += 1
                try:
                    price = await asyncio.wait_for(self._attempt(symbol, deadline), timeout=deadline)
                except asyncio.TimeoutError:
                    last_error = FetchTimeoutError(
                        f"fetch timed out after {deadline}s for {symbol}"
                    )
                except FetchError as exc:
                    last_error = exc
                else:
                    self.successes += 1
                    print(f"[FETCH][ok] symbol={symbol} price={price} attempt={attempt}", flush=True)
                    return price

                print(
                    f"[FETCH][attempt_failed] symbol={symbol} attempt={attempt} "
                    f"kind={type(last_error).__name__} error={last_error}",
                    flush=True,
                )
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

        self.failures += 1
        raise PriceFetchFailedError(symbol, self.max_retries, last_error) from last_error

    def metrics(self) -> dict[str, int | bool]:
        return {
            "browser_running": self._browser is not None,
            "closed": self._closed,
            "launches": self.launches,
            "closes": self.closes,
            "attempts": self.attempts,
            "retries": self.retries,
            "successes": self.successes,
            "failures": self.failures,
            "in_flight": self._in_flight,
            "contexts_opened": self.contexts_opened,
            "contexts_closed": self.contexts_closed,
        }
