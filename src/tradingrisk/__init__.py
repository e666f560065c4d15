"""Portfolio risk assessment and position sizing for the trading bot."""

__version__ = "0.1.0"
