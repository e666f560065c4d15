"""
Risk Service — portfolio risk assessment and position sizing over HTTP.

Handles:
- Portfolio risk snapshots (exposure, VaR, margin utilization, drawdown)
- Per-position risk metrics
- Position sizing against per-account limits
- Feed ingestion (prices, fills, limits) via HTTP push or Kafka
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tradingrisk.config import settings
from tradingrisk.feed.channel import FeedChannel
from tradingrisk.models.schemas import (
    AccountIn,
    FillIn,
    InstrumentIn,
    PositionRiskOut,
    PositionSizeIn,
    PriceUpdateIn,
    RiskLimitsIn,
    RiskSnapshotOut,
    SizingResultOut,
)
from tradingrisk.risk.errors import (
    InvalidRequestError,
    MissingMarketDataError,
    RiskError,
    StaleDataError,
    UnknownAccountError,
    UnknownInstrumentError,
)
from tradingrisk.services.risk.service import RiskService

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[RiskError], int] = {
    UnknownAccountError: status.HTTP_404_NOT_FOUND,
    UnknownInstrumentError: status.HTTP_404_NOT_FOUND,
    MissingMarketDataError: status.HTTP_409_CONFLICT,
    StaleDataError: status.HTTP_409_CONFLICT,
    InvalidRequestError: status.HTTP_400_BAD_REQUEST,
}


async def _risk_error_handler(request: Request, exc: RiskError) -> JSONResponse:
    code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=code, content={"error": exc.code, "message": exc.message})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and Shutdown logic."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )
    service: RiskService = app.state.service
    service.start_feeds()

    kafka = None
    kafka_task = None
    if settings.kafka_enabled:
        from tradingrisk.feed.kafka_consumer import KafkaFeedConsumer, default_routes

        kafka = KafkaFeedConsumer(default_routes(*service.feeds()))
        try:
            await kafka.start()
        except Exception:
            logger.exception("Kafka feed consumer failed to start")
            await service.stop_feeds()
            raise
        kafka_task = asyncio.create_task(kafka.consume())

    logger.info("%s started on port %d", settings.service_name, settings.port)
    yield

    if kafka_task:
        kafka_task.cancel()
        try:
            await kafka_task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Kafka feed consumer ended with an error")
    if kafka:
        await kafka.stop()
    await service.stop_feeds()
    logger.info("%s stopped", settings.service_name)


def create_app(service: RiskService | None = None) -> FastAPI:
    app = FastAPI(title="Trading Bot Risk Service", version="0.1.0", lifespan=lifespan)
    app.state.service = service or RiskService()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RiskError, _risk_error_handler)
    _register_routes(app)
    return app


def get_service(request: Request) -> RiskService:
    return request.app.state.service


def _push(channel: FeedChannel, record, wait: bool) -> dict:
    if not channel.offer(record):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Feed channel '{channel.name}' is full",
        )
    processed = channel.drain() if wait else 0
    return {"accepted": True, "channel": channel.name, "processed": processed}


def _register_routes(app: FastAPI) -> None:
    @app.get("/api/health")
    async def health(service: RiskService = Depends(get_service)):
        return {
            "status": "healthy",
            "service": settings.service_name,
            "message": "Risk Management Service",
            "timestamp": int(time.time() * 1000),
            **service.status(),
        }

    # ── Risk queries ──────────────────────────────────────────────────────

    @app.get("/api/risk/portfolio", response_model=RiskSnapshotOut)
    def portfolio_risk(
        account: str = Query(min_length=1),
        refresh: bool = False,
        service: RiskService = Depends(get_service),
    ):
        """Aggregate risk snapshot for an account."""
        snapshot = service.portfolio_risk(account, use_cached=not refresh)
        return RiskSnapshotOut.from_domain(snapshot)

    @app.get("/api/risk/positions")
    def position_risk(
        account: str = Query(min_length=1),
        instrument: Optional[str] = None,
        service: RiskService = Depends(get_service),
    ):
        """Per-position metrics; all positions when no instrument is given."""
        if instrument:
            return PositionRiskOut.from_domain(service.position_risk(account, instrument))
        snapshot = service.portfolio_risk(account)
        return {
            "account_id": account,
            "sequence": snapshot.sequence,
            "positions": [PositionRiskOut.from_domain(p) for p in snapshot.positions],
        }

    @app.post("/api/risk/position-size", response_model=SizingResultOut)
    def position_size(body: PositionSizeIn, service: RiskService = Depends(get_service)):
        """Size a proposed trade against the account's limits."""
        return SizingResultOut.from_domain(service.position_size(body.to_domain()))

    # ── Registration ──────────────────────────────────────────────────────

    @app.post("/api/accounts", status_code=status.HTTP_201_CREATED)
    def register_account(body: AccountIn, service: RiskService = Depends(get_service)):
        created = service.register_account(
            body.account_id, body.limits.to_domain() if body.limits else None
        )
        return {"account_id": body.account_id, "created": created}

    @app.post("/api/instruments", status_code=status.HTTP_201_CREATED)
    def register_instrument(body: InstrumentIn, service: RiskService = Depends(get_service)):
        instrument = service.register_instrument(body.to_domain())
        return {"symbol": instrument.symbol, "multiplier": instrument.multiplier}

    # ── Feed push ─────────────────────────────────────────────────────────

    @app.post("/api/feed/prices", status_code=status.HTTP_202_ACCEPTED)
    async def push_price(
        body: PriceUpdateIn, wait: bool = False, service: RiskService = Depends(get_service)
    ):
        return _push(service.price_feed, body.to_domain(), wait)

    @app.post("/api/feed/fills", status_code=status.HTTP_202_ACCEPTED)
    async def push_fill(
        body: FillIn, wait: bool = False, service: RiskService = Depends(get_service)
    ):
        return _push(service.fill_feed, body.to_domain(), wait)

    @app.post("/api/feed/limits", status_code=status.HTTP_202_ACCEPTED)
    async def push_limits(
        body: RiskLimitsIn, wait: bool = False, service: RiskService = Depends(get_service)
    ):
        return _push(service.limits_feed, body.to_domain(), wait)


app = create_app()


if __name__ == "__main__":
    uvicorn.run("tradingrisk.services.risk.main:app", host=settings.host, port=settings.port)
