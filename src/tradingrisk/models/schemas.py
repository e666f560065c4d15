"""
Request/response models for the service boundary.

Feed records and HTTP payloads are validated here once and converted into
the internal dataclasses before they reach the engine.
"""

from __future__ import annotations

import math
from typing import Annotated, Optional

from pydantic import BaseModel, Field

from tradingrisk.models.enums import BindingConstraint, TradeDirection
from tradingrisk.models.types import (
    FillEvent,
    Instrument,
    PositionRisk,
    PriceUpdate,
    RiskLimits,
    RiskSnapshot,
    SizingRequest,
    SizingResult,
)

PositiveFinite = Annotated[float, Field(gt=0, allow_inf_nan=False)]


# ── Inbound: feed records ─────────────────────────────────────────────────────


class PriceUpdateIn(BaseModel):
    symbol: str = Field(min_length=1)
    price: float = Field(gt=0, allow_inf_nan=False)
    timestamp: float = Field(allow_inf_nan=False)
    volatility: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)

    def to_domain(self) -> PriceUpdate:
        return PriceUpdate(self.symbol, self.price, self.timestamp, self.volatility)


class FillIn(BaseModel):
    account_id: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    quantity: float = Field(allow_inf_nan=False)  # Signed
    price: float = Field(gt=0, allow_inf_nan=False)

    def to_domain(self) -> FillEvent:
        return FillEvent(self.account_id, self.symbol, self.quantity, self.price)


class RiskLimitsIn(BaseModel):
    account_id: str = Field(min_length=1)
    capital: float = Field(gt=0, allow_inf_nan=False)
    max_gross_exposure: float = Field(gt=0, allow_inf_nan=False)
    max_var: float = Field(gt=0, allow_inf_nan=False)
    max_position_qty: float = Field(gt=0, allow_inf_nan=False)
    position_overrides: dict[str, PositiveFinite] = Field(default_factory=dict)

    def to_domain(self) -> RiskLimits:
        return RiskLimits(
            account_id=self.account_id,
            capital=self.capital,
            max_gross_exposure=self.max_gross_exposure,
            max_var=self.max_var,
            max_position_qty=self.max_position_qty,
            position_overrides=self.position_overrides,
        )


# ── Inbound: registration & queries ───────────────────────────────────────────


class InstrumentIn(BaseModel):
    symbol: str = Field(min_length=1)
    tick_size: float = Field(default=0.01, gt=0, allow_inf_nan=False)
    multiplier: float = Field(default=1.0, gt=0, allow_inf_nan=False)
    initial_volatility: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)

    def to_domain(self) -> Instrument:
        return Instrument(self.symbol, self.tick_size, self.multiplier, self.initial_volatility)


class AccountIn(BaseModel):
    account_id: str = Field(min_length=1)
    limits: Optional[RiskLimitsIn] = None


class PositionSizeIn(BaseModel):
    account_id: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    direction: TradeDirection
    proposed_qty: float = Field(allow_inf_nan=False)
    confidence: float = Field(default=1.0, allow_inf_nan=False)

    def to_domain(self) -> SizingRequest:
        # Range checks live in the sizer so every caller gets InvalidRequest
        return SizingRequest(
            self.account_id, self.symbol, self.direction, self.proposed_qty, self.confidence
        )


# ── Outbound ──────────────────────────────────────────────────────────────────


class PositionRiskOut(BaseModel):
    symbol: str
    quantity: float
    avg_entry_price: float
    last_price: float
    multiplier: float
    notional: float
    exposure: float
    unrealized_pnl: float
    realized_pnl: float
    volatility: float
    standalone_var: float
    component_var: float
    weight: float

    @classmethod
    def from_domain(cls, risk: PositionRisk) -> "PositionRiskOut":
        return cls(
            symbol=risk.symbol,
            quantity=risk.quantity,
            avg_entry_price=risk.avg_entry_price,
            last_price=risk.last_price,
            multiplier=risk.multiplier,
            notional=risk.notional,
            exposure=risk.exposure,
            unrealized_pnl=risk.unrealized_pnl,
            realized_pnl=risk.realized_pnl,
            volatility=risk.volatility,
            standalone_var=risk.standalone_var,
            component_var=risk.component_var,
            weight=risk.weight,
        )


class RiskSnapshotOut(BaseModel):
    account_id: str
    sequence: int
    gross_exposure: float
    net_exposure: float
    value_at_risk: float
    margin_utilization: Optional[float]
    unrealized_pnl: float
    realized_pnl: float
    drawdown_pct: Optional[float]
    position_count: int
    positions: list[PositionRiskOut]
    book_version: int
    market_version: int
    limits_version: int
    computed_at: float

    @classmethod
    def from_domain(cls, snap: RiskSnapshot) -> "RiskSnapshotOut":
        return cls(
            account_id=snap.account_id,
            sequence=snap.sequence,
            gross_exposure=snap.gross_exposure,
            net_exposure=snap.net_exposure,
            value_at_risk=snap.value_at_risk,
            margin_utilization=snap.margin_utilization,
            unrealized_pnl=snap.unrealized_pnl,
            realized_pnl=snap.realized_pnl,
            drawdown_pct=snap.drawdown_pct,
            position_count=snap.position_count,
            positions=[PositionRiskOut.from_domain(p) for p in snap.positions],
            book_version=snap.book_version,
            market_version=snap.market_version,
            limits_version=snap.limits_version,
            computed_at=snap.computed_at,
        )


class SizingResultOut(BaseModel):
    account_id: str
    symbol: str
    direction: TradeDirection
    requested_qty: float
    approved_qty: float
    rejected: bool
    binding_constraint: BindingConstraint
    caps: dict[str, Optional[float]]  # None = unbounded
    snapshot_sequence: int

    @classmethod
    def from_domain(cls, result: SizingResult) -> "SizingResultOut":
        return cls(
            account_id=result.account_id,
            symbol=result.symbol,
            direction=result.direction,
            requested_qty=result.requested_qty,
            approved_qty=result.approved_qty,
            rejected=result.rejected,
            binding_constraint=result.binding_constraint,
            caps={
                c.value: (v if math.isfinite(v) else None)
                for c, v in result.caps.items()
            },
            snapshot_sequence=result.snapshot_sequence,
        )
