"""
Risk service facade — the one object the HTTP layer talks to.

Owns the market data cache, position book, limits store, risk engine and
position sizer, and the three feed channels that feed them. No module
level state: the app builds one ``RiskService`` and passes it around.
"""

from __future__ import annotations

import logging
import time

from tradingrisk.config import OverflowPolicy, settings
from tradingrisk.feed.channel import FeedChannel
from tradingrisk.models.types import (
    FillEvent,
    Instrument,
    Position,
    PositionRisk,
    PricePoint,
    PriceUpdate,
    RiskLimits,
    RiskSnapshot,
    SizingRequest,
    SizingResult,
)
from tradingrisk.risk.engine import RiskEngine, VarModel
from tradingrisk.risk.errors import InvalidRequestError, UnknownAccountError
from tradingrisk.risk.limits import LimitsStore, validate_limits
from tradingrisk.risk.market_data import MarketDataCache
from tradingrisk.risk.position_book import PositionBook
from tradingrisk.risk.sizing import PositionSizer

logger = logging.getLogger(__name__)


class RiskService:
    """Orchestrates feeds, state and risk computations.

    Usage:
        service = RiskService()
        service.register_instrument(Instrument("AAPL"))
        service.register_account("ACC-1", limits)
        service.on_price(PriceUpdate("AAPL", 150.0, time.time()))
        service.portfolio_risk("ACC-1")
    """

    def __init__(
        self,
        var_model: VarModel | None = None,
        min_tradable_unit: float | None = None,
        queue_size: int | None = None,
        overflow_policy: OverflowPolicy | None = None,
    ) -> None:
        self.market_data = MarketDataCache()
        self.book = PositionBook(self.market_data)
        self.limits = LimitsStore()
        self.engine = RiskEngine(self.market_data, self.book, self.limits, var_model)
        self.sizer = PositionSizer(self.engine, min_tradable_unit)

        self.price_feed: FeedChannel[PriceUpdate] = FeedChannel(
            "prices", self.on_price, queue_size, overflow_policy
        )
        self.fill_feed: FeedChannel[FillEvent] = FeedChannel(
            "fills", self.on_fill, queue_size, overflow_policy
        )
        self.limits_feed: FeedChannel[RiskLimits] = FeedChannel(
            "limits", self.on_limits, queue_size, overflow_policy
        )
        self._started_at = time.time()

    # ── Registration ──────────────────────────────────────────────────────

    def register_instrument(self, instrument: Instrument) -> Instrument:
        return self.market_data.register(instrument)

    def register_account(self, account_id: str, limits: RiskLimits | None = None) -> bool:
        """Register an account, optionally with its limits.

        Limits are validated before anything is registered, so a rejected
        request leaves no account behind.
        """
        if limits is not None:
            if limits.account_id != account_id:
                raise InvalidRequestError(
                    f"Limits for '{limits.account_id}' cannot be attached to '{account_id}'"
                )
            validate_limits(limits)
        created = self.book.register_account(account_id)
        if limits is not None:
            self.on_limits(limits)
        return created

    # ── Feed handlers ─────────────────────────────────────────────────────

    def on_price(self, update: PriceUpdate) -> PricePoint:
        return self.market_data.update(
            update.symbol, update.price, update.timestamp, update.volatility
        )

    def on_fill(self, fill: FillEvent) -> Position | None:
        return self.book.apply_fill(fill.account_id, fill.symbol, fill.quantity, fill.price)

    def on_limits(self, limits: RiskLimits) -> int:
        if not self.book.has_account(limits.account_id):
            raise UnknownAccountError(limits.account_id)
        return self.limits.set(limits)

    def feeds(self) -> tuple[FeedChannel, FeedChannel, FeedChannel]:
        return self.price_feed, self.fill_feed, self.limits_feed

    def start_feeds(self) -> None:
        for channel in self.feeds():
            channel.start()

    async def stop_feeds(self) -> None:
        for channel in self.feeds():
            await channel.stop()

    # ── Queries ───────────────────────────────────────────────────────────

    def portfolio_risk(self, account_id: str, *, use_cached: bool = True) -> RiskSnapshot:
        return self.engine.compute_snapshot(account_id, use_cached=use_cached)

    def position_risk(self, account_id: str, symbol: str) -> PositionRisk:
        if not self.book.has_account(account_id):
            raise UnknownAccountError(account_id)
        return self.engine.position_risk(account_id, symbol)

    def position_size(self, request: SizingRequest) -> SizingResult:
        return self.sizer.size(request)

    def status(self) -> dict:
        return {
            "accounts": len(self.book.accounts()),
            "instruments": len(self.market_data),
            "market_version": self.market_data.version,
            "uptime": time.time() - self._started_at,
            "feeds": {c.name: c.stats() for c in self.feeds()},
        }
