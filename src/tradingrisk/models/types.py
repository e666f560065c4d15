"""Core data types (dataclasses) used throughout the risk service."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from tradingrisk.models.enums import BindingConstraint, TradeDirection


# ─── Reference Data ────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Instrument:
    """Tradable instrument. Immutable once registered."""

    symbol: str
    tick_size: float = 0.01
    multiplier: float = 1.0  # Contract multiplier (1 for cash equities)
    initial_volatility: float | None = None  # Seeds the EWMA on first price


@dataclass(frozen=True)
class RiskLimits:
    """Per-account risk configuration, supplied externally."""

    account_id: str
    capital: float
    max_gross_exposure: float
    max_var: float
    max_position_qty: float  # Default absolute cap per instrument
    position_overrides: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "position_overrides", MappingProxyType(dict(self.position_overrides))
        )

    def position_cap(self, symbol: str) -> float:
        return self.position_overrides.get(symbol, self.max_position_qty)


# ─── Market Data ───────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class PricePoint:
    """Latest price and rolling volatility estimate for one instrument."""

    symbol: str
    price: float
    timestamp: float
    volatility: float  # Per-period return volatility (EWMA)


# ─── Positions ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Position:
    """An open position. Replaced, never mutated, on every fill."""

    account_id: str
    symbol: str
    quantity: float  # Signed: > 0 long, < 0 short
    avg_entry_price: float
    realized_pnl: float = 0.0

    @property
    def is_long(self) -> bool:
        return self.quantity > 0


@dataclass(frozen=True)
class PositionSnapshot:
    """Immutable point-in-time view of all positions in one account."""

    account_id: str
    version: int
    positions: Mapping[str, Position]
    realized_pnl: float  # Includes P&L of positions already closed
    taken_at: float = 0.0

    def get(self, symbol: str) -> Position | None:
        return self.positions.get(symbol)


# ─── Risk ──────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class PositionRisk:
    """Risk metrics for a single position."""

    symbol: str
    quantity: float
    avg_entry_price: float
    last_price: float
    multiplier: float
    notional: float  # Signed: quantity × price × multiplier
    exposure: float  # |notional|
    unrealized_pnl: float
    realized_pnl: float
    volatility: float
    standalone_var: float
    component_var: float  # Contribution to portfolio VaR (sums to VaR)
    weight: float  # Share of account gross exposure


@dataclass(frozen=True)
class RiskSnapshot:
    """Aggregate risk for one account. Published by replacement, never mutated."""

    account_id: str
    sequence: int
    gross_exposure: float
    net_exposure: float
    value_at_risk: float
    margin_utilization: float | None  # None when no limits are configured
    unrealized_pnl: float
    realized_pnl: float
    drawdown_pct: float | None
    positions: tuple[PositionRisk, ...]
    book_version: int
    market_version: int
    limits_version: int
    computed_at: float

    @property
    def position_count(self) -> int:
        return len(self.positions)

    def position(self, symbol: str) -> PositionRisk | None:
        for p in self.positions:
            if p.symbol == symbol:
                return p
        return None


# ─── Position Sizing ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class SizingRequest:
    """A proposed trade to be sized against an account's risk budget."""

    account_id: str
    symbol: str
    direction: TradeDirection
    proposed_qty: float  # Unsigned; direction carries the sign
    confidence: float = 1.0  # (0, 1], scales the desired quantity


@dataclass(frozen=True)
class SizingResult:
    """Outcome of a sizing request."""

    account_id: str
    symbol: str
    direction: TradeDirection
    requested_qty: float
    approved_qty: float
    rejected: bool
    binding_constraint: BindingConstraint
    caps: Mapping[BindingConstraint, float]
    snapshot_sequence: int

    @property
    def signed_qty(self) -> float:
        return self.direction.sign * self.approved_qty


# ─── Feed Events ───────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class PriceUpdate:
    """Market data event from the price feed."""

    symbol: str
    price: float
    timestamp: float
    volatility: float | None = None  # Feed-supplied estimate overrides EWMA


@dataclass(frozen=True, slots=True)
class FillEvent:
    """Executed trade from the fill feed."""

    account_id: str
    symbol: str
    quantity: float  # Signed
    price: float
