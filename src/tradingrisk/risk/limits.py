"""
Per-account risk limits — read-only reference data, replaced wholesale.

Limits are stored in-memory for zero-latency reads. Each replacement bumps
the account's version so cached risk snapshots can tell they are stale.
"""

from __future__ import annotations

import logging
import math
import threading

from tradingrisk.models.types import RiskLimits
from tradingrisk.risk.errors import InvalidRequestError

logger = logging.getLogger(__name__)


def validate_limits(limits: RiskLimits) -> None:
    """Raise InvalidRequestError if any limit is non-positive or non-finite."""
    checks = {
        "capital": limits.capital,
        "max_gross_exposure": limits.max_gross_exposure,
        "max_var": limits.max_var,
        "max_position_qty": limits.max_position_qty,
    }
    for symbol, cap in limits.position_overrides.items():
        checks[f"position_overrides[{symbol}]"] = cap
    for name, value in checks.items():
        if not math.isfinite(value) or value <= 0:
            raise InvalidRequestError(
                f"Limit '{name}' for account '{limits.account_id}' must be positive"
            )


class LimitsStore:
    """Current RiskLimits per account."""

    def __init__(self) -> None:
        self._limits: dict[str, tuple[int, RiskLimits]] = {}
        self._lock = threading.Lock()

    def set(self, limits: RiskLimits) -> int:
        """Replace the account's limits. Returns the new limits version."""
        validate_limits(limits)
        with self._lock:
            version = self._limits.get(limits.account_id, (0, None))[0] + 1
            self._limits[limits.account_id] = (version, limits)
        logger.info(
            "Limits v%d for %s: capital=%.0f gross<=%.0f var<=%.0f qty<=%g",
            version,
            limits.account_id,
            limits.capital,
            limits.max_gross_exposure,
            limits.max_var,
            limits.max_position_qty,
        )
        return version

    def get(self, account_id: str) -> RiskLimits | None:
        entry = self._limits.get(account_id)
        return entry[1] if entry else None

    def version(self, account_id: str) -> int:
        entry = self._limits.get(account_id)
        return entry[0] if entry else 0

    def entry(self, account_id: str) -> tuple[int, RiskLimits | None]:
        """``(version, limits)`` read together."""
        return self._limits.get(account_id, (0, None))
