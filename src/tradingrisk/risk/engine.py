"""
Risk engine — exposure, parametric VaR, drawdown and margin utilization.

A snapshot is a pure function of three immutable inputs read at the start
of the call: the account's PositionSnapshot, the matching PricePoints
(all from one cache version) and the account's RiskLimits. Nothing is
accumulated between calls, so a failed computation leaves no trace and
accounts never affect each other.

VaR model (placeholder, not a covariance model):

    a_i   = notional_i × vol_i                      (signed)
    σ²    = Σ_i Σ_j ρ_ij a_i a_j,   ρ_ii = 1, ρ_ij = ρ (constant)
          = Σ a_i² + ρ · ((Σ a_i)² - Σ a_i²)
    VaR   = z(confidence) × √horizon × σ

With ρ = 0 (default) positions are treated as independent. Writing
w_i = notional_i / gross turns this into z × σ_portfolio × gross.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from statistics import NormalDist

from tradingrisk.config import settings
from tradingrisk.models.types import PositionRisk, RiskLimits, RiskSnapshot
from tradingrisk.risk.errors import MissingMarketDataError
from tradingrisk.risk.limits import LimitsStore
from tradingrisk.risk.market_data import MarketDataCache
from tradingrisk.risk.position_book import PositionBook

logger = logging.getLogger(__name__)


class VarModel:
    """Parametric VaR under a constant pairwise correlation.

    Works on *risk weights* ``a_i = signed notional × volatility``.
    """

    __slots__ = ("confidence", "horizon_days", "correlation", "z_score", "scale")

    def __init__(
        self,
        confidence: float | None = None,
        horizon_days: float | None = None,
        correlation: float | None = None,
    ) -> None:
        self.confidence = confidence if confidence is not None else settings.var_confidence
        self.horizon_days = horizon_days if horizon_days is not None else settings.var_horizon_days
        self.correlation = correlation if correlation is not None else settings.default_correlation
        if not 0.5 < self.confidence < 1.0:
            raise ValueError("confidence must be in (0.5, 1)")
        if self.horizon_days <= 0:
            raise ValueError("horizon_days must be positive")
        if not -1.0 <= self.correlation <= 1.0:
            raise ValueError("correlation must be in [-1, 1]")
        self.z_score: float = NormalDist().inv_cdf(self.confidence)
        self.scale: float = self.z_score * math.sqrt(self.horizon_days)

    def variance(self, weights: list[float]) -> float:
        total = sum(weights)
        squares = sum(a * a for a in weights)
        # Negative correlations can push the quadratic form below zero
        return max(squares + self.correlation * (total * total - squares), 0.0)

    def value_at_risk(self, weights: list[float]) -> float:
        return self.scale * math.sqrt(self.variance(weights))

    def covariance_row(self, weights: list[float], k: int) -> float:
        """Σ_j ρ_kj a_j — sensitivity of σ² to a_k (halved)."""
        total = sum(weights)
        return weights[k] + self.correlation * (total - weights[k])

    def component_var(self, weights: list[float]) -> list[float]:
        """Euler allocation: components sum to the portfolio VaR."""
        sigma = math.sqrt(self.variance(weights))
        if sigma == 0.0:
            return [0.0] * len(weights)
        total = sum(weights)
        return [
            self.scale * a * (a + self.correlation * (total - a)) / sigma
            for a in weights
        ]


class RiskEngine:
    """Computes and publishes RiskSnapshots.

    Usage:
        engine = RiskEngine(market_data, book, limits)
        snap = engine.compute_snapshot("ACC-1")
        snap.gross_exposure, snap.value_at_risk

        # Under high query rates, reuse the last snapshot if nothing changed:
        snap = engine.compute_snapshot("ACC-1", use_cached=True)
    """

    def __init__(
        self,
        market_data: MarketDataCache,
        book: PositionBook,
        limits: LimitsStore,
        var_model: VarModel | None = None,
    ) -> None:
        self.market_data = market_data
        self.book = book
        self.limits = limits
        self.var_model = var_model or VarModel()
        self._published: dict[str, RiskSnapshot] = {}
        self._publish_lock = threading.Lock()
        self._sequence = 0

    def compute_snapshot(self, account_id: str, *, use_cached: bool = False) -> RiskSnapshot:
        """Compute the account's RiskSnapshot.

        Raises UnknownAccountError, or MissingMarketDataError if any held
        instrument has no price. No partial snapshot is ever returned.
        """
        positions = self.book.snapshot(account_id)
        limits_version, limits = self.limits.entry(account_id)

        if use_cached:
            cached = self._published.get(account_id)
            if (
                cached is not None
                and cached.book_version == positions.version
                and cached.limits_version == limits_version
                and cached.market_version == self.market_data.version
            ):
                return cached

        symbols = sorted(positions.positions)
        market_version, prices = self.market_data.read(symbols)
        missing = [s for s in symbols if s not in prices]
        if missing:
            logger.warning(
                "Risk snapshot for %s aborted: no price for %s", account_id, missing
            )
            raise MissingMarketDataError(missing)

        rows: list[tuple] = []
        weights: list[float] = []
        for symbol in symbols:
            pos = positions.positions[symbol]
            point = prices[symbol]
            multiplier = self.market_data.instrument(symbol).multiplier
            notional = pos.quantity * point.price * multiplier
            unrealized = pos.quantity * (point.price - pos.avg_entry_price) * multiplier
            rows.append((pos, point, multiplier, notional, unrealized))
            weights.append(notional * point.volatility)

        gross = sum(abs(r[3]) for r in rows)
        net = sum(r[3] for r in rows)
        var = self.var_model.value_at_risk(weights)
        components = self.var_model.component_var(weights)

        position_risks = tuple(
            PositionRisk(
                symbol=pos.symbol,
                quantity=pos.quantity,
                avg_entry_price=pos.avg_entry_price,
                last_price=point.price,
                multiplier=multiplier,
                notional=notional,
                exposure=abs(notional),
                unrealized_pnl=unrealized,
                realized_pnl=pos.realized_pnl,
                volatility=point.volatility,
                standalone_var=self.var_model.scale * abs(weight),
                component_var=component,
                weight=abs(notional) / gross if gross > 0 else 0.0,
            )
            for (pos, point, multiplier, notional, unrealized), weight, component in zip(
                rows, weights, components
            )
        )
        unrealized_total = sum(r[4] for r in rows)
        margin, drawdown = _capital_ratios(
            limits, gross, positions.realized_pnl + unrealized_total
        )

        with self._publish_lock:
            self._sequence += 1
            snapshot = RiskSnapshot(
                account_id=account_id,
                sequence=self._sequence,
                gross_exposure=gross,
                net_exposure=net,
                value_at_risk=var,
                margin_utilization=margin,
                unrealized_pnl=unrealized_total,
                realized_pnl=positions.realized_pnl,
                drawdown_pct=drawdown,
                positions=position_risks,
                book_version=positions.version,
                market_version=market_version,
                limits_version=limits_version,
                computed_at=time.time(),
            )
            current = self._published.get(account_id)
            # A slower racing call must not replace a snapshot built on newer inputs
            if current is None or (
                snapshot.book_version >= current.book_version
                and snapshot.market_version >= current.market_version
                and snapshot.limits_version >= current.limits_version
            ):
                self._published[account_id] = snapshot

        logger.debug(
            "Snapshot #%d %s: gross=%.2f net=%.2f var=%.2f",
            snapshot.sequence, account_id, gross, net, var,
        )
        return snapshot

    def latest(self, account_id: str) -> RiskSnapshot | None:
        """Last published snapshot (may be stale)."""
        return self._published.get(account_id)

    def position_risk(self, account_id: str, symbol: str) -> PositionRisk:
        """Metrics for one instrument in an account.

        A registered instrument the account does not hold yields a flat
        (zero-quantity) result priced off the cache.
        """
        instrument = self.market_data.instrument(symbol)
        snapshot = self.compute_snapshot(account_id, use_cached=True)
        held = snapshot.position(symbol)
        if held is not None:
            return held

        point = self.market_data.get(symbol)
        return PositionRisk(
            symbol=symbol,
            quantity=0.0,
            avg_entry_price=0.0,
            last_price=point.price,
            multiplier=instrument.multiplier,
            notional=0.0,
            exposure=0.0,
            unrealized_pnl=0.0,
            realized_pnl=0.0,
            volatility=point.volatility,
            standalone_var=0.0,
            component_var=0.0,
            weight=0.0,
        )


def _capital_ratios(
    limits: RiskLimits | None, gross: float, total_pnl: float
) -> tuple[float | None, float | None]:
    """``(margin_utilization, drawdown_pct)`` relative to configured capital."""
    if limits is None:
        return None, None
    margin = gross / limits.capital
    drawdown = max(0.0, -total_pnl) / limits.capital
    return margin, drawdown
