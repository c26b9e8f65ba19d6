from __future__ import annotations


class StockbotError(Exception):
    """Base class for every error raised by stockbot."""


class FetchError(StockbotError):
    """A single quote fetch attempt failed."""

    retryable = True


class FetchTimeoutError(FetchError):
    pass


class ElementNotFoundError(FetchError):
    pass


class NavigationError(FetchError):
    pass


class PriceFetchFailedError(StockbotError):
    """Every attempt within the retry budget failed for one symbol."""

    def __init__(self, symbol: str, attempts: int, last_error: Exception | None = None) -> None:
        self.symbol = symbol
        self.attempts = attempts
        self.last_error = last_error
        reason = f"{type(last_error).__name__}: {last_error}" if last_error else "unknown"
        super().__init__(f"failed to fetch price for {symbol} after {attempts} attempts ({reason})")


class QuoteSourceUnavailableError(StockbotError):
    """The shared browser could not be started."""


class QuoteSourceClosedError(StockbotError):
    pass


class EmptySymbolSetError(StockbotError, ValueError):
    pass


class StorageError(StockbotError):
    pass


class NoClosingPriceError(StorageError):
    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"no closing price found for {symbol}")


class InvalidPriceFormatError(StorageError, ValueError):
    pass


class MessageSendError(StockbotError):
    pass


class MessagePreparationError(MessageSendError):
    pass
