"""
Market data cache — latest price and EWMA volatility per instrument.

Each instrument has its own lock so updates for different instruments never
wait on each other's volatility math. Publication (the dict swap and the
global version bump) happens under one short lock, which is also what
``read()`` takes to hand out a set of prices that all belong to the same
cache version.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Iterable

from tradingrisk.config import settings
from tradingrisk.models.types import Instrument, PricePoint
from tradingrisk.risk.errors import (
    InvalidRequestError,
    MissingMarketDataError,
    StaleDataError,
    UnknownInstrumentError,
)

logger = logging.getLogger(__name__)


class EwmaVolatility:
    """Exponentially weighted volatility of log returns.

    var_t = λ · var_{t-1} + (1 - λ) · r_t²,   λ = 0.5 ** (1 / half_life)

    The half-life is measured in observations, so after ``half_life``
    updates an old squared return carries half its original weight.
    """

    __slots__ = ("half_life", "_lambda", "_variance", "_prev_price")

    def __init__(self, half_life: float, initial_volatility: float) -> None:
        if half_life <= 0:
            raise ValueError("half_life must be positive")
        self.half_life = half_life
        self._lambda: float = 0.5 ** (1.0 / half_life)
        self._variance: float = initial_volatility**2
        self._prev_price: float | None = None

    def update(self, price: float) -> float:
        if self._prev_price is not None:
            r = math.log(price / self._prev_price)
            self._variance = self._lambda * self._variance + (1.0 - self._lambda) * r * r
        self._prev_price = price
        return math.sqrt(self._variance)

    def seed(self, price: float, volatility: float) -> None:
        """Restart the estimate from a feed-supplied volatility."""
        self._variance = volatility**2
        self._prev_price = price

    @property
    def value(self) -> float:
        return math.sqrt(self._variance)


class _InstrumentSlot:
    __slots__ = ("instrument", "lock", "estimator")

    def __init__(self, instrument: Instrument, estimator: EwmaVolatility) -> None:
        self.instrument = instrument
        self.lock = threading.Lock()
        self.estimator = estimator


class MarketDataCache:
    """Latest PricePoint per registered instrument.

    Usage:
        cache = MarketDataCache()
        cache.register(Instrument("AAPL"))
        cache.update("AAPL", 150.0, timestamp=1.0)
        cache.get("AAPL").price  # 150.0
    """

    def __init__(
        self,
        half_life: float | None = None,
        default_volatility: float | None = None,
    ) -> None:
        self._half_life = half_life or settings.volatility_half_life
        self._default_volatility = (
            default_volatility
            if default_volatility is not None
            else settings.default_volatility
        )
        self._slots: dict[str, _InstrumentSlot] = {}
        self._registry_lock = threading.Lock()
        self._prices: dict[str, PricePoint] = {}
        self._publish_lock = threading.Lock()
        self._version = 0

    # ── Registration ──────────────────────────────────────────────────────

    def register(self, instrument: Instrument) -> Instrument:
        """Register an instrument. Idempotent for identical terms."""
        if not instrument.symbol:
            raise InvalidRequestError("Instrument symbol is required")
        terms = (instrument.multiplier, instrument.tick_size)
        if not all(math.isfinite(t) and t > 0 for t in terms):
            raise InvalidRequestError(
                f"Instrument '{instrument.symbol}' needs positive tick size and multiplier"
            )
        vol = instrument.initial_volatility
        if vol is not None and (not math.isfinite(vol) or vol < 0):
            raise InvalidRequestError(
                f"Initial volatility for '{instrument.symbol}' must be >= 0"
            )
        with self._registry_lock:
            existing = self._slots.get(instrument.symbol)
            if existing is not None:
                if existing.instrument != instrument:
                    raise InvalidRequestError(
                        f"Instrument '{instrument.symbol}' is already registered "
                        "with different terms"
                    )
                return existing.instrument
            initial = instrument.initial_volatility
            if initial is None:
                initial = self._default_volatility
            self._slots[instrument.symbol] = _InstrumentSlot(
                instrument, EwmaVolatility(self._half_life, initial)
            )
        logger.info(
            "Registered instrument %s (tick=%s, multiplier=%s)",
            instrument.symbol, instrument.tick_size, instrument.multiplier,
        )
        return instrument

    def instrument(self, symbol: str) -> Instrument:
        slot = self._slots.get(symbol)
        if slot is None:
            raise UnknownInstrumentError(symbol)
        return slot.instrument

    def has_instrument(self, symbol: str) -> bool:
        return symbol in self._slots

    def instruments(self) -> list[Instrument]:
        return [s.instrument for s in list(self._slots.values())]

    # ── Updates ───────────────────────────────────────────────────────────

    def update(
        self,
        symbol: str,
        price: float,
        timestamp: float,
        volatility: float | None = None,
    ) -> PricePoint:
        """Replace the PricePoint for ``symbol``.

        Raises StaleDataError (cache unchanged) when ``timestamp`` is not
        newer than the stored one.
        """
        slot = self._slots.get(symbol)
        if slot is None:
            raise UnknownInstrumentError(symbol)
        if not math.isfinite(price) or price <= 0:
            raise InvalidRequestError(f"Price for '{symbol}' must be positive, got {price}")
        if volatility is not None and (not math.isfinite(volatility) or volatility < 0):
            raise InvalidRequestError(f"Volatility for '{symbol}' must be >= 0")
        if not math.isfinite(timestamp):
            raise InvalidRequestError(f"Timestamp for '{symbol}' must be finite, got {timestamp}")

        with slot.lock:
            current = self._prices.get(symbol)
            if current is not None and timestamp <= current.timestamp:
                raise StaleDataError(symbol, timestamp, current.timestamp)

            if volatility is None:
                vol = slot.estimator.update(price)
            else:
                slot.estimator.seed(price, volatility)
                vol = volatility

            point = PricePoint(symbol=symbol, price=price, timestamp=timestamp, volatility=vol)
            with self._publish_lock:
                self._prices[symbol] = point
                self._version += 1
        return point

    # ── Reads ─────────────────────────────────────────────────────────────

    def get(self, symbol: str) -> PricePoint:
        if symbol not in self._slots:
            raise UnknownInstrumentError(symbol)
        point = self._prices.get(symbol)
        if point is None:
            raise MissingMarketDataError([symbol])
        return point

    def read(self, symbols: Iterable[str]) -> tuple[int, dict[str, PricePoint]]:
        """Return ``(version, prices)`` for ``symbols`` as of one cache version.

        Symbols without a price are simply absent from the result.
        """
        with self._publish_lock:
            version = self._version
            found = {s: self._prices[s] for s in symbols if s in self._prices}
        return version, found

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        return len(self._slots)
