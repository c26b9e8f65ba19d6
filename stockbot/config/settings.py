import os
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, field_validator, model_validator

from stockbot.services.market_hours import parse_windows

DEFAULT_SYMBOLS = ["AAPL", "GOOGL", "AMZN", "MSFT", "TSLA", "NVDA", "NFLX", "META"]
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)


class Settings(BaseModel):
    STOCKBOT_SYMBOLS: list[str] = DEFAULT_SYMBOLS

    MESSENGER: Literal["telegram", "line"] = "telegram"
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_CHAT_ID: str | None = None
    LINE_CHANNEL_ACCESS_TOKEN: str | None = None

    STORAGE_BACKEND: Literal["sqlite", "memory"] = "sqlite"
    SQLITE_PATH: str = "data/prices.db"

    FETCH_MAX_CONCURRENCY: int = 5
    FETCH_TIMEOUT_SEC: float = 120.0
    PRICE_ELEMENT_TIMEOUT_SEC: float = 30.0
    FETCH_MAX_RETRIES: int = 3
    FETCH_RETRY_INTERVAL_SEC: float = 5.0

    ALERT_THRESHOLD_PCT: float = 5.0

    CHECK_INTERVAL_MIN: int = 15
    DAILY_REPORT_HOUR: int = 6
    REALTIME_INTERVAL_MIN: int = 30
    TIMEZONE: str = "Asia/Taipei"
    MARKET_WINDOWS: list[tuple[int, int]] = [(21 * 60 + 30, 24 * 60), (0, 4 * 60)]

    QUOTE_URL_TEMPLATE: str = "https://finance.yahoo.com/quote/{symbol}/"
    PRICE_SELECTOR: str = 'span[data-testid="qsp-price"]'
    BROWSER_HEADLESS: bool = True
    BROWSER_JAVASCRIPT_ENABLED: bool = False
    BROWSER_USER_AGENT: str = DEFAULT_USER_AGENT

    SCHEDULER_ENABLED: bool = True
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    @field_validator("STOCKBOT_SYMBOLS", mode="before")
    @classmethod
    def split_symbols(cls, value):
        if isinstance(value, str):
            value = [s.strip().upper() for s in value.split(",") if s.strip()]
        if not value:
            raise ValueError("at least one symbol is required")
        return value

    @field_validator("MARKET_WINDOWS", mode="before")
    @classmethod
    def parse_market_windows(cls, value):
        if isinstance(value, str):
            return parse_windows(value)
        return value

    @field_validator("TIMEZONE")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @field_validator("FETCH_MAX_CONCURRENCY", "FETCH_MAX_RETRIES", "CHECK_INTERVAL_MIN", "REALTIME_INTERVAL_MIN")
    @classmethod
    def require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("DAILY_REPORT_HOUR")
    @classmethod
    def validate_report_hour(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError("must be between 0 and 23")
        return value

    @model_validator(mode="after")
    def require_channel_credentials(self) -> "Settings":
        if self.MESSENGER == "telegram":
            if not self.TELEGRAM_BOT_TOKEN:
                raise ValueError("TELEGRAM_BOT_TOKEN not set")
            if not self.TELEGRAM_CHAT_ID:
                raise ValueError("TELEGRAM_CHAT_ID not set")
        elif not self.LINE_CHANNEL_ACCESS_TOKEN:
            raise ValueError("LINE_CHANNEL_ACCESS_TOKEN not set")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)

    @classmethod
    def from_env(cls) -> "Settings":
        # unset variables fall back to the field defaults
        raw = {name: os.getenv(name) for name in cls.model_fields}
        return cls.model_validate({k: v for k, v in raw.items() if v is not None and v != ""})


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
