"""
Position sizing against an account's risk budget.

Every limit is turned into a feasible interval ``[lo, hi]`` for the
additional unsigned quantity ``x`` in the requested direction:

- Gross exposure:  other_gross + |q + d·x|·unit ≤ max_gross
- Position limit:  |q + d·x| ≤ cap(symbol)
- Value at risk:   VaR(a_k + d·x·unit·vol) ≤ max_var, solved exactly on
  the engine's VarModel (σ² is quadratic in the trade size)

The approved quantity is ``min(proposed × confidence, hi...)`` rounded
down to the minimum tradable unit. Sizing only reads snapshots, so a
caller may abandon it at any point.
"""

from __future__ import annotations

import logging
import math

from tradingrisk.config import settings
from tradingrisk.models.enums import BindingConstraint, TradeDirection
from tradingrisk.models.types import RiskSnapshot, SizingRequest, SizingResult
from tradingrisk.risk.engine import RiskEngine, VarModel
from tradingrisk.risk.errors import InvalidRequestError, UnknownAccountError

logger = logging.getLogger(__name__)

# Interval of allowed additional quantity; None means no x ≥ 0 satisfies the limit
Bound = tuple[float, float] | None


def abs_bound(current_qty: float, direction: int, limit: float) -> Bound:
    """Feasible ``x ≥ 0`` such that ``|current_qty + direction·x| ≤ limit``."""
    if limit < 0:
        return None
    signed = direction * current_qty
    lo = max(0.0, -limit - signed)
    hi = limit - signed
    if hi < lo:
        return None
    return lo, hi


def var_bound(
    model: VarModel,
    weights: list[float],
    index: int,
    step_weight: float,
    max_var: float,
) -> Bound:
    """Feasible ``x ≥ 0`` such that VaR stays within ``max_var`` when
    ``weights[index]`` grows by ``x × step_weight``.
    """
    budget = (max_var / model.scale) ** 2
    total = sum(weights)
    squares = sum(a * a for a in weights)
    v0 = squares + model.correlation * (total * total - squares)
    b = step_weight

    if b == 0.0:
        return (0.0, math.inf) if v0 <= budget else None

    c = model.covariance_row(weights, index)
    # b²x² + 2bc·x + (v0 - budget) ≤ 0
    disc = c * c - (v0 - budget)
    if disc < 0:
        return None
    root = math.sqrt(disc)
    t1 = (-c - root) / b
    t2 = (-c + root) / b
    lo, hi = min(t1, t2), max(t1, t2)
    lo = max(lo, 0.0)
    if hi < lo:
        return None
    return lo, hi


def round_down(quantity: float, unit: float) -> float:
    # Tolerance keeps e.g. 3 × 0.1 from flooring to 0.2
    return math.floor(quantity / unit + 1e-9) * unit


class PositionSizer:
    """Sizes proposed trades so post-trade risk stays within limits.

    Usage:
        sizer = PositionSizer(engine)
        result = sizer.size(SizingRequest("ACC-1", "AAPL", TradeDirection.BUY, 500))
        if result.rejected:
            # result.binding_constraint names the limit
    """

    def __init__(self, engine: RiskEngine, min_tradable_unit: float | None = None) -> None:
        self.engine = engine
        self.min_tradable_unit = min_tradable_unit or settings.min_tradable_unit

    def size(self, request: SizingRequest) -> SizingResult:
        direction = _validate(request)
        engine = self.engine
        if not engine.book.has_account(request.account_id):
            raise UnknownAccountError(request.account_id)
        instrument = engine.market_data.instrument(request.symbol)
        limits = engine.limits.get(request.account_id)
        if limits is None:
            raise InvalidRequestError(
                f"No risk limits configured for account '{request.account_id}'"
            )

        snapshot = engine.compute_snapshot(request.account_id, use_cached=True)
        held = snapshot.position(request.symbol)
        if held is not None:
            qty, price, vol = held.quantity, held.last_price, held.volatility
        else:
            point = engine.market_data.get(request.symbol)
            qty, price, vol = 0.0, point.price, point.volatility

        unit_notional = price * instrument.multiplier
        sign = direction.sign
        bounds: dict[BindingConstraint, Bound] = {
            BindingConstraint.GROSS_EXPOSURE: abs_bound(
                qty,
                sign,
                (limits.max_gross_exposure - (snapshot.gross_exposure - abs(qty) * unit_notional))
                / unit_notional,
            ),
            BindingConstraint.POSITION_LIMIT: abs_bound(
                qty, sign, limits.position_cap(request.symbol)
            ),
            BindingConstraint.VALUE_AT_RISK: self._var_bound(
                snapshot, request.symbol, sign * unit_notional * vol, limits.max_var
            ),
        }

        desired = request.proposed_qty * request.confidence
        return self._decide(request, direction, desired, bounds, snapshot)

    def _var_bound(
        self, snapshot: RiskSnapshot, symbol: str, step_weight: float, max_var: float
    ) -> Bound:
        weights = [p.notional * p.volatility for p in snapshot.positions]
        symbols = [p.symbol for p in snapshot.positions]
        if symbol in symbols:
            index = symbols.index(symbol)
        else:
            weights.append(0.0)
            index = len(weights) - 1
        return var_bound(self.engine.var_model, weights, index, step_weight, max_var)

    def _decide(
        self,
        request: SizingRequest,
        direction: TradeDirection,
        desired: float,
        bounds: dict[BindingConstraint, Bound],
        snapshot: RiskSnapshot,
    ) -> SizingResult:
        caps = {c: (b[1] if b is not None else 0.0) for c, b in bounds.items()}

        def result(approved: float, binding: BindingConstraint) -> SizingResult:
            rejected = approved <= 0.0
            if rejected or binding is not BindingConstraint.NONE:
                logger.info(
                    "Sizing %s %s %g %s -> %g (%s%s)",
                    request.account_id, direction.value, request.proposed_qty,
                    request.symbol, approved, binding.value,
                    ", rejected" if rejected else "",
                )
            return SizingResult(
                account_id=request.account_id,
                symbol=request.symbol,
                direction=direction,
                requested_qty=request.proposed_qty,
                approved_qty=approved,
                rejected=rejected,
                binding_constraint=binding,
                caps=caps,
                snapshot_sequence=snapshot.sequence,
            )

        for constraint, bound in bounds.items():
            if bound is None:
                return result(0.0, constraint)

        binding = BindingConstraint.NONE
        approved = desired
        for constraint, (_, hi) in bounds.items():
            if hi < approved:
                approved, binding = hi, constraint

        approved = max(round_down(approved, self.min_tradable_unit), 0.0)
        if approved < self.min_tradable_unit:
            if binding is BindingConstraint.NONE:
                binding = BindingConstraint.MIN_TRADABLE_UNIT
            return result(0.0, binding)

        # A trade too small to bring an existing breach back inside a limit
        for constraint, (lo, _) in bounds.items():
            if approved < lo:
                return result(0.0, constraint)

        return result(approved, binding)


def _validate(request: SizingRequest) -> TradeDirection:
    try:
        direction = TradeDirection(request.direction)
    except ValueError:
        raise InvalidRequestError(f"Unknown direction '{request.direction}'") from None
    if not math.isfinite(request.proposed_qty) or request.proposed_qty <= 0:
        raise InvalidRequestError("proposed_qty must be a positive number")
    if not math.isfinite(request.confidence) or not 0.0 < request.confidence <= 1.0:
        raise InvalidRequestError("confidence must be in (0, 1]")
    return direction
