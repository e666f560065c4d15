"""
Risk error taxonomy.

Every error is local to the key (account or instrument) that raised it.
The HTTP boundary maps ``code`` straight into the response body.
"""

from __future__ import annotations


class RiskError(Exception):
    """Base class for all risk-service errors."""

    code = "RISK_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnknownAccountError(RiskError):
    code = "UNKNOWN_ACCOUNT"

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account '{account_id}' is not registered")
        self.account_id = account_id


class UnknownInstrumentError(RiskError):
    code = "UNKNOWN_INSTRUMENT"

    def __init__(self, symbol: str) -> None:
        super().__init__(f"Instrument '{symbol}' is not registered")
        self.symbol = symbol


class StaleDataError(RiskError):
    """Out-of-order market update. Callers log and drop it."""

    code = "STALE_DATA"

    def __init__(self, symbol: str, timestamp: float, current: float) -> None:
        super().__init__(
            f"Stale update for '{symbol}': ts={timestamp} <= current ts={current}"
        )
        self.symbol = symbol
        self.timestamp = timestamp
        self.current = current


class MissingMarketDataError(RiskError):
    """A computation needs a price that is not available."""

    code = "MISSING_MARKET_DATA"

    def __init__(self, symbols: list[str] | tuple[str, ...]) -> None:
        self.symbols = tuple(sorted(symbols))
        super().__init__(f"No market data for: {', '.join(self.symbols)}")


class InvalidRequestError(RiskError):
    code = "INVALID_REQUEST"
