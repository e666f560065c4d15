"""
Tests for position sizing: gross / position / VaR caps, rejections and
request validation.
"""

import math
import random
from statistics import NormalDist

import pytest

from tradingrisk.models.enums import BindingConstraint, TradeDirection
from tradingrisk.models.types import Instrument, RiskLimits, SizingRequest
from tradingrisk.risk.engine import RiskEngine, VarModel
from tradingrisk.risk.errors import (
    InvalidRequestError,
    UnknownAccountError,
    UnknownInstrumentError,
)
from tradingrisk.risk.limits import LimitsStore
from tradingrisk.risk.market_data import MarketDataCache
from tradingrisk.risk.position_book import PositionBook
from tradingrisk.risk.sizing import PositionSizer, abs_bound, round_down, var_bound

BUY, SELL = TradeDirection.BUY, TradeDirection.SELL
Z95 = NormalDist().inv_cdf(0.95)


class Desk:
    """Small wiring helper for sizing scenarios."""

    def __init__(self, min_unit=1.0, correlation=0.0):
        self.cache = MarketDataCache(half_life=20.0, default_volatility=0.02)
        self.cache.register(Instrument("AAPL"))
        self.cache.register(Instrument("MSFT"))
        self.book = PositionBook(self.cache)
        self.limits = LimitsStore()
        self.engine = RiskEngine(self.cache, self.book, self.limits, VarModel(0.95, 1.0, correlation))
        self.sizer = PositionSizer(self.engine, min_tradable_unit=min_unit)
        self.book.register_account("A")

    def set_limits(self, gross=100_000, var=1e9, qty=10_000, capital=100_000, **overrides):
        self.limits.set(RiskLimits("A", capital, gross, var, qty, overrides))

    def size(self, direction, qty, symbol="AAPL", confidence=1.0):
        return self.sizer.size(SizingRequest("A", symbol, direction, qty, confidence))


@pytest.fixture
def desk():
    d = Desk()
    d.cache.update("AAPL", 150.0, timestamp=1.0)
    d.cache.update("MSFT", 300.0, timestamp=1.0)
    d.set_limits()
    return d


# ── Bounds ────────────────────────────────────────────────────────────────────


class TestBounds:
    def test_abs_bound_from_flat(self):
        assert abs_bound(0, 1, 100) == (0.0, 100)

    def test_abs_bound_reducing_trade_can_cross(self):
        lo, hi = abs_bound(50, -1, 100)
        assert (lo, hi) == (0.0, 150)

    def test_abs_bound_existing_breach_needs_minimum(self):
        lo, hi = abs_bound(150, -1, 100)
        assert lo == 50 and hi == 250

    def test_abs_bound_infeasible(self):
        assert abs_bound(0, 1, -1) is None
        assert abs_bound(150, 1, 100) is None

    def test_var_bound_single_position(self):
        model = VarModel(0.95, 1.0, 0.0)
        lo, hi = var_bound(model, [0.0], 0, step_weight=2.0, max_var=1_000)
        assert lo == 0.0
        assert hi == pytest.approx(1_000 / (2.0 * Z95))

    def test_var_bound_zero_volatility_unbounded(self):
        model = VarModel(0.95, 1.0, 0.0)
        assert var_bound(model, [0.0], 0, 0.0, 1_000) == (0.0, math.inf)

    def test_round_down(self):
        assert round_down(166.67, 1.0) == 166
        assert round_down(0.3, 0.1) == pytest.approx(0.3)


# ── Scenario ──────────────────────────────────────────────────────────────────


class TestGrossExposureScenario:
    def test_first_buy_not_capped(self, desk):
        result = desk.size(BUY, 500)
        assert result.approved_qty == 500
        assert result.rejected is False
        assert result.binding_constraint is BindingConstraint.NONE
        assert result.caps[BindingConstraint.GROSS_EXPOSURE] == pytest.approx(100_000 / 150)

    def test_second_buy_capped_by_gross(self, desk):
        desk.book.apply_fill("A", "AAPL", 500, 150.0)
        assert desk.engine.compute_snapshot("A").gross_exposure == pytest.approx(75_000)

        result = desk.size(BUY, 500)
        assert result.approved_qty == 166
        assert result.binding_constraint is BindingConstraint.GROSS_EXPOSURE
        assert result.signed_qty == 166

    def test_sell_against_long_may_cross_zero(self, desk):
        desk.book.apply_fill("A", "AAPL", 500, 150.0)
        result = desk.size(SELL, 800)
        assert result.approved_qty == 800
        assert result.signed_qty == -800

    def test_other_positions_consume_gross(self, desk):
        desk.book.apply_fill("A", "MSFT", -200, 300.0)  # 60 000 gross
        result = desk.size(BUY, 500)
        assert result.approved_qty == math.floor(40_000 / 150)

    def test_existing_breach_small_reduction_rejected(self, desk):
        desk.book.apply_fill("A", "AAPL", 500, 150.0)
        desk.set_limits(gross=50_000)
        small = desk.size(SELL, 100)
        assert small.rejected is True
        assert small.approved_qty == 0
        assert small.binding_constraint is BindingConstraint.GROSS_EXPOSURE
        assert desk.size(SELL, 200).approved_qty == 200


class TestOtherConstraints:
    def test_position_limit(self, desk):
        desk.set_limits(qty=200)
        result = desk.size(BUY, 500)
        assert result.approved_qty == 200
        assert result.binding_constraint is BindingConstraint.POSITION_LIMIT

    def test_position_override(self, desk):
        desk.set_limits(qty=10_000, AAPL=50)
        assert desk.size(BUY, 500).approved_qty == 50
        assert desk.size(BUY, 100, symbol="MSFT").approved_qty == 100

    def test_var_limit(self, desk):
        desk.set_limits(var=1_000)
        result = desk.size(BUY, 1_000)
        # VaR(x) = z · x · 150 · 0.02
        assert result.approved_qty == math.floor(1_000 / (Z95 * 150 * 0.02))
        assert result.binding_constraint is BindingConstraint.VALUE_AT_RISK

    def test_var_cap_keeps_projected_var_within_limit(self, desk):
        desk.book.apply_fill("A", "MSFT", 100, 300.0)
        desk.set_limits(var=2_000)
        result = desk.size(BUY, 10_000)
        model = desk.engine.var_model
        projected = model.value_at_risk([100 * 300 * 0.02, result.approved_qty * 150 * 0.02])
        assert projected <= 2_000
        assert result.binding_constraint is BindingConstraint.VALUE_AT_RISK

    def test_hedge_allowed_under_correlation(self):
        d = Desk(correlation=0.9)
        d.cache.update("AAPL", 100.0, timestamp=1.0)
        d.cache.update("MSFT", 100.0, timestamp=1.0)
        d.book.apply_fill("A", "MSFT", 500, 100.0)
        d.set_limits(gross=10_000_000, var=2_000)
        # A short in a correlated name reduces VaR, so it sizes larger than a long
        short = d.size(SELL, 10_000)
        long = d.size(BUY, 10_000)
        assert short.approved_qty > long.approved_qty

    def test_confidence_scales_desired_quantity(self, desk):
        result = desk.size(BUY, 500, confidence=0.5)
        assert result.approved_qty == 250
        assert result.requested_qty == 500


class TestRejections:
    def test_below_min_unit_rejected(self):
        d = Desk(min_unit=100)
        d.cache.update("AAPL", 150.0, timestamp=1.0)
        d.set_limits(qty=50)
        result = d.size(BUY, 500)
        assert result.rejected is True
        assert result.approved_qty == 0
        assert result.binding_constraint is BindingConstraint.POSITION_LIMIT

    def test_request_smaller_than_min_unit(self, desk):
        result = desk.size(BUY, 0.5)
        assert result.rejected is True
        assert result.binding_constraint is BindingConstraint.MIN_TRADABLE_UNIT

    def test_rounds_down_to_min_unit(self):
        d = Desk(min_unit=10)
        d.cache.update("AAPL", 150.0, timestamp=1.0)
        d.set_limits()
        assert d.size(BUY, 47).approved_qty == 40


class TestValidation:
    @pytest.mark.parametrize("qty", [0, -5, float("nan")])
    def test_bad_quantity(self, desk, qty):
        with pytest.raises(InvalidRequestError):
            desk.size(BUY, qty)

    @pytest.mark.parametrize("confidence", [0.0, 1.5])
    def test_bad_confidence(self, desk, confidence):
        with pytest.raises(InvalidRequestError):
            desk.size(BUY, 10, confidence=confidence)

    def test_no_limits_configured(self):
        d = Desk()
        d.cache.update("AAPL", 150.0, timestamp=1.0)
        with pytest.raises(InvalidRequestError):
            d.size(BUY, 10)

    def test_unknown_account(self, desk):
        with pytest.raises(UnknownAccountError):
            desk.sizer.size(SizingRequest("ZZZ", "AAPL", BUY, 10))

    def test_unknown_instrument(self, desk):
        with pytest.raises(UnknownInstrumentError):
            desk.size(BUY, 10, symbol="TSLA")


def test_sizing_is_pure(desk):
    desk.book.apply_fill("A", "AAPL", 100, 150.0)
    version = desk.book.version("A")
    desk.size(BUY, 500)
    desk.size(SELL, 500)
    assert desk.book.version("A") == version
    assert desk.book.position("A", "AAPL").quantity == 100


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_never_exceeds_proposed_or_max_gross(seed):
    rng = random.Random(seed)
    d = Desk()
    d.cache.update("AAPL", rng.uniform(50, 200), timestamp=1.0)
    d.cache.update("MSFT", rng.uniform(50, 400), timestamp=1.0)
    d.set_limits(gross=rng.uniform(50_000, 200_000), qty=rng.uniform(100, 2_000))
    max_gross = d.limits.get("A").max_gross_exposure

    for _ in range(30):
        symbol = rng.choice(["AAPL", "MSFT"])
        direction = rng.choice([BUY, SELL])
        proposed = rng.randint(1, 1_500)
        result = d.size(direction, proposed, symbol=symbol)
        assert 0 <= result.approved_qty <= proposed
        if result.approved_qty:
            price = d.cache.get(symbol).price
            d.book.apply_fill("A", symbol, result.signed_qty, price)
            assert d.engine.compute_snapshot("A").gross_exposure <= max_gross + 1e-6
