import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from metrics_engine.api.metrics_endpoint import AdaptiveMetricsCache
from metrics_engine.cache.redis_client import close_redis, connect_redis
from metrics_engine.config import COLLECTOR_ENABLED, PORT, REQUEST_TIMEOUT, RETENTION_DAYS
from metrics_engine.models.token_metrics import extract_record, metrics_response
from metrics_engine.orchestrator.fetcher import MetricsUnavailableError
from metrics_engine.orchestrator.scheduler import MetricsCollector

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
log = logging.getLogger("amc.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_client = await connect_redis()
    http_client = httpx.AsyncClient(
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        timeout=REQUEST_TIMEOUT,
    )
    amc = AdaptiveMetricsCache.build(redis_client, http_client)
    collector = MetricsCollector(amc)

    app.state.redis = redis_client
    app.state.amc = amc
    app.state.collector = collector

    if COLLECTOR_ENABLED:
        await collector.start()
    yield

    collector.stop()
    await amc.close()
    await http_client.aclose()
    await close_redis(redis_client)


app = FastAPI(
    title="Adaptive Metrics Cache",
    description="Token market data with conditional fetches, change detection and volatility-driven polling.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _amc(request: Request) -> AdaptiveMetricsCache:
    return request.app.state.amc


@app.get("/")
async def root():
    return {"status": "ok", "docs": "/docs", "api": "/api/smart-metrics"}


@app.get("/health")
async def health(request: Request):
    redis_client = getattr(request.app.state, "redis", None)
    collector: Optional[MetricsCollector] = getattr(request.app.state, "collector", None)
    return {
        "status": "healthy",
        "redis": "connected" if redis_client else "unavailable (using memory stores)",
        "collector": collector.get_status() if collector else None,
        "timestamp": int(time.time()),
    }


@app.get("/api/smart-metrics", tags=["Metrics"])
async def smart_metrics(request: Request, response: Response):
    amc = _amc(request)
    try:
        result = await amc.fetch_token_metrics()
    except MetricsUnavailableError as e:
        log.error(f"smart-metrics: {e}")
        raise HTTPException(503, "Token data unavailable")

    if extract_record(result.data) is None:
        raise HTTPException(503, "Token data unavailable")

    interval = await amc.determine_poll_interval(amc.token_address)
    response.headers["Cache-Control"] = "public, max-age=15"
    return metrics_response(result, interval, datetime.now(timezone.utc).isoformat())


@app.get("/api/chart/{token_address}", tags=["History"])
async def chart(
    request: Request,
    response: Response,
    token_address: str,
    timeframe: str = Query("24h", description="1h, 24h, 7d or 30d"),
    downsample: bool = Query(False, description="One point per timeframe bucket"),
):
    data = await _amc(request).get_historical_prices(token_address, timeframe, downsample=downsample)
    response.headers["Cache-Control"] = "public, max-age=30"
    return {
        "tokenAddress": token_address,
        "timeframe": timeframe,
        "data": data,
        "fromDatabase": True,
    }


@app.get("/api/poll-interval/{token_address}", tags=["Metrics"])
async def poll_interval(request: Request, token_address: str):
    amc = _amc(request)
    volatility = await amc.estimate_volatility(token_address)
    return {
        "tokenAddress": token_address,
        "volatility": round(volatility, 4),
        "tier": amc.policy.tier_for(volatility),
        "intervalMs": amc.policy.recommend_interval(volatility),
    }


@app.get("/api/status", tags=["Admin"])
async def status(request: Request):
    return _amc(request).status()


@app.post("/api/admin/cleanup", tags=["Admin"])
async def cleanup(request: Request, retention_days: int = Query(RETENTION_DAYS, ge=0)):
    report = await _amc(request).cleanup_old_data(retention_days)
    return report.to_dict()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=PORT, reload=False, log_level="info")
