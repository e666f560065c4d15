"""Core enums used throughout the risk service."""

from __future__ import annotations

from enum import Enum


# ─── Trading ───────────────────────────────────────────────────────────────────


class TradeDirection(str, Enum):
    """Direction of a proposed trade."""

    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        return 1 if self is TradeDirection.BUY else -1


# ─── Position Sizing ───────────────────────────────────────────────────────────


class BindingConstraint(str, Enum):
    """The limit that capped (or rejected) a sizing request."""

    NONE = "NONE"
    GROSS_EXPOSURE = "GROSS_EXPOSURE"
    POSITION_LIMIT = "POSITION_LIMIT"
    VALUE_AT_RISK = "VALUE_AT_RISK"
    MIN_TRADABLE_UNIT = "MIN_TRADABLE_UNIT"
