"""
Position book — authoritative open positions per account.

Fills for one account are serialized by that account's lock; fills for
different accounts never contend. Every fill publishes a fresh immutable
``PositionSnapshot`` so readers grab the current reference without
locking and can never observe a half-applied fill.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import replace
from types import MappingProxyType

from tradingrisk.models.types import Position, PositionSnapshot
from tradingrisk.risk.errors import InvalidRequestError, UnknownAccountError
from tradingrisk.risk.market_data import MarketDataCache

logger = logging.getLogger(__name__)

# Residual quantities below this are treated as flat (float round-off)
QTY_EPSILON = 1e-9


def fill_position(
    account_id: str,
    symbol: str,
    current: Position | None,
    quantity: float,
    price: float,
    multiplier: float = 1.0,
) -> tuple[Position | None, float]:
    """Apply one fill to a position.

    Returns ``(new_position, realized)`` where ``new_position`` is None if
    the fill flattens it.

    - Adding in the same direction: volume-weighted average entry.
    - Reducing: realize ``closed × (price - avg) × side × multiplier``,
      average entry unchanged.
    - Crossing through zero: realize the closed portion, open the
      remainder at the fill price.
    """
    if current is None:
        return Position(account_id, symbol, quantity, price, 0.0), 0.0

    q = current.quantity
    if q * quantity > 0:
        new_q = q + quantity
        avg = (abs(q) * current.avg_entry_price + abs(quantity) * price) / abs(new_q)
        return replace(current, quantity=new_q, avg_entry_price=avg), 0.0

    side = 1.0 if q > 0 else -1.0
    closed = min(abs(quantity), abs(q))
    realized = closed * (price - current.avg_entry_price) * side * multiplier
    total_realized = current.realized_pnl + realized
    new_q = q + quantity

    if abs(new_q) <= QTY_EPSILON:
        return None, realized
    if new_q * q > 0:
        return replace(current, quantity=new_q, realized_pnl=total_realized), realized
    # Flipped: the remainder is a fresh position opened at the fill price
    return Position(account_id, symbol, new_q, price, total_realized), realized


class _AccountSlot:
    __slots__ = ("lock", "state")

    def __init__(self, state: PositionSnapshot) -> None:
        self.lock = threading.Lock()
        self.state = state


class PositionBook:
    """Open positions per account, mutated only through ``apply_fill``.

    Usage:
        book = PositionBook(market_data)
        book.register_account("ACC-1")
        book.apply_fill("ACC-1", "AAPL", 500, 150.0)
        book.snapshot("ACC-1").positions["AAPL"].quantity  # 500
    """

    def __init__(self, market_data: MarketDataCache) -> None:
        self._market_data = market_data
        self._accounts: dict[str, _AccountSlot] = {}
        self._registry_lock = threading.Lock()

    # ── Accounts ──────────────────────────────────────────────────────────

    def register_account(self, account_id: str) -> bool:
        """Register an account. Returns False if it already existed."""
        if not account_id:
            raise InvalidRequestError("Account id is required")
        with self._registry_lock:
            if account_id in self._accounts:
                return False
            self._accounts[account_id] = _AccountSlot(
                PositionSnapshot(
                    account_id=account_id,
                    version=0,
                    positions=MappingProxyType({}),
                    realized_pnl=0.0,
                    taken_at=time.time(),
                )
            )
        logger.info("Registered account %s", account_id)
        return True

    def has_account(self, account_id: str) -> bool:
        return account_id in self._accounts

    def accounts(self) -> list[str]:
        return list(self._accounts)

    def _slot(self, account_id: str) -> _AccountSlot:
        slot = self._accounts.get(account_id)
        if slot is None:
            raise UnknownAccountError(account_id)
        return slot

    # ── Fills ─────────────────────────────────────────────────────────────

    def apply_fill(
        self,
        account_id: str,
        symbol: str,
        quantity: float,
        price: float,
    ) -> Position | None:
        """Apply a signed fill. Returns the resulting position (None if flat)."""
        slot = self._slot(account_id)
        instrument = self._market_data.instrument(symbol)
        if not math.isfinite(quantity) or abs(quantity) <= QTY_EPSILON:
            raise InvalidRequestError("Fill quantity must be non-zero")
        if not math.isfinite(price) or price <= 0:
            raise InvalidRequestError(f"Fill price must be positive, got {price}")

        with slot.lock:
            state = slot.state
            position, realized = fill_position(
                account_id,
                symbol,
                state.positions.get(symbol),
                quantity,
                price,
                instrument.multiplier,
            )
            positions = dict(state.positions)
            if position is None:
                positions.pop(symbol, None)
            else:
                positions[symbol] = position
            slot.state = PositionSnapshot(
                account_id=account_id,
                version=state.version + 1,
                positions=MappingProxyType(positions),
                realized_pnl=state.realized_pnl + realized,
                taken_at=time.time(),
            )

        if position is None:
            logger.info(
                "Fill %s %+g %s @ %.4f closed position (realized %.2f)",
                account_id, quantity, symbol, price, realized,
            )
        else:
            logger.debug(
                "Fill %s %+g %s @ %.4f -> qty=%g avg=%.4f",
                account_id, quantity, symbol, price, position.quantity,
                position.avg_entry_price,
            )
        return position

    # ── Reads ─────────────────────────────────────────────────────────────

    def snapshot(self, account_id: str) -> PositionSnapshot:
        """Immutable view of the account's positions at this instant."""
        return self._slot(account_id).state

    def version(self, account_id: str) -> int:
        return self._slot(account_id).state.version

    def position(self, account_id: str, symbol: str) -> Position | None:
        return self.snapshot(account_id).positions.get(symbol)
