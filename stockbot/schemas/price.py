from datetime import datetime

from pydantic import BaseModel, ConfigDict


class PriceSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: str
    timestamp: datetime
    is_closing: bool = False


class FetchOutcome(BaseModel):
    symbol: str
    price: str | None = None
    error: str | None = None
    error_kind: str | None = None
    sample: PriceSample | None = None

    @property
    def ok(self) -> bool:
        return self.price is not None


class PriceAlert(BaseModel):
    symbol: str
    previous_price: float
    current_price: float
    percent_change: float
    timestamp: datetime

    @property
    def direction(self) -> str:
        return "UP" if self.percent_change > 0 else "DOWN"
