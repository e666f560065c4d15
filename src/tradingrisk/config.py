"""
Central configuration for the trading bot risk service.

All settings are loaded from environment variables with sensible defaults.
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class OverflowPolicy(str, Enum):
    """What a feed channel does when its queue is full."""

    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Environment ---
    env: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"

    # --- HTTP Boundary ---
    service_name: str = "trading-bot-risk"
    host: str = "0.0.0.0"
    port: int = 3003
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # --- Value-at-Risk Model ---
    # Parametric VaR with a constant pairwise correlation. Placeholder model.
    var_confidence: float = Field(default=0.95, gt=0.5, lt=1.0)
    var_horizon_days: float = Field(default=1.0, gt=0.0)
    default_correlation: float = Field(default=0.0, ge=-1.0, le=1.0)

    # --- Volatility Estimation ---
    volatility_half_life: float = Field(default=20.0, gt=0.0)  # observations
    default_volatility: float = Field(default=0.02, ge=0.0)

    # --- Position Sizing ---
    min_tradable_unit: float = Field(default=1.0, gt=0.0)

    # --- Feed Ingestion ---
    feed_queue_size: int = Field(default=10_000, gt=0)
    feed_overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST

    # --- Kafka (optional feed transport) ---
    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_group_id: str = "trading-bot-risk"
    kafka_price_topic: str = "risk.prices"
    kafka_fill_topic: str = "risk.fills"
    kafka_limits_topic: str = "risk.limits"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


# Singleton settings instance
settings = Settings()
