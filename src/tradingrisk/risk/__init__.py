"""
Risk core: market data, positions, limits, risk engine and position sizing.
"""

from .errors import (
    InvalidRequestError,
    MissingMarketDataError,
    RiskError,
    StaleDataError,
    UnknownAccountError,
    UnknownInstrumentError,
)
from .market_data import MarketDataCache
from .position_book import PositionBook
from .limits import LimitsStore
from .engine import RiskEngine, VarModel
from .sizing import PositionSizer

__all__ = [
    "MarketDataCache",
    "PositionBook",
    "LimitsStore",
    "RiskEngine",
    "VarModel",
    "PositionSizer",
    "RiskError",
    "UnknownAccountError",
    "UnknownInstrumentError",
    "StaleDataError",
    "MissingMarketDataError",
    "InvalidRequestError",
]
