import asyncio
import dataclasses
import logging
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Header, HTTPException, Request

from .db import run_migrations
from .guardrails import build_guardrails
from .schemas import CacheStatsResponse, DashboardStatisticsResponse, RateLimitDetail, RefreshResponse
from .settings import settings
from .statistics import build_dashboard_statistics
from .web import router as web_router

logger = logging.getLogger(__name__)

app = FastAPI(title="Clinic Dashboard API", version="2.0.0")
app.include_router(web_router)

STATISTICS_CACHE_KEY = "dashboard_statistics"

_process_started = time.monotonic()


@app.on_event("startup")
async def _startup():
    await asyncio.to_thread(run_migrations)
    guardrails = build_guardrails(settings)
    guardrails.scheduler.start()
    app.state.guardrails = guardrails
    logger.info(
        "Guardrails ready: cache max_size=%d, rate limit %d requests per %dms",
        settings.max_cache_size,
        settings.rate_limit_max_requests,
        settings.rate_limit_window_ms,
    )


@app.on_event("shutdown")
async def _shutdown():
    guardrails = getattr(app.state, "guardrails", None)
    if guardrails is not None:
        await guardrails.scheduler.stop()


@app.get("/health")
def health():
    return {"ok": True}


def _client_id(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _ms_to_datetime(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def _rate_limited(rate_limiter, client_id: str) -> HTTPException:
    info = RateLimitDetail(**dataclasses.asdict(rate_limiter.get_info(client_id)))
    return HTTPException(
        status_code=429,
        detail={"message": "Rate limit exceeded", "rate_limit": info.model_dump(mode="json")},
        headers={
            "X-RateLimit-Limit": str(info.limit),
            "X-RateLimit-Remaining": str(info.remaining),
        },
    )


@app.get("/api/dashboard/statistics", response_model=DashboardStatisticsResponse)
def dashboard_statistics(request: Request):
    guardrails = request.app.state.guardrails
    client_id = _client_id(request)
    if not guardrails.rate_limiter.is_allowed(client_id):
        raise _rate_limited(guardrails.rate_limiter, client_id)

    cache = guardrails.cache
    cached = cache.get(STATISTICS_CACHE_KEY)
    if cached is not None:
        entry = cache.peek_entry(STATISTICS_CACHE_KEY)
        return {
            "cached": True,
            "last_updated": cached.get("generated_at"),
            "cached_at": _ms_to_datetime(entry.created_at) if entry else None,
            "data": cached,
            "cache_stats": cache.get_stats(),
        }

    try:
        data = build_dashboard_statistics()
    except Exception:
        logger.exception("Failed to generate dashboard statistics")
        raise HTTPException(status_code=500, detail="Failed to generate dashboard statistics.")

    cache.set(STATISTICS_CACHE_KEY, data, settings.dashboard_cache_ttl_ms)
    logger.info("Dashboard statistics generated in %sms", data["performance_metrics"]["processing_time_ms"])
    return {
        "cached": False,
        "last_updated": data["generated_at"],
        "processing_time_ms": data["performance_metrics"]["processing_time_ms"],
        "data": data,
        "cache_stats": cache.get_stats(),
    }


@app.post("/api/dashboard/statistics/refresh", response_model=RefreshResponse)
def refresh_dashboard_statistics(request: Request, x_admin_token: str | None = Header(default=None)):
    if settings.admin_refresh_token and x_admin_token != settings.admin_refresh_token:
        raise HTTPException(status_code=403, detail="Invalid admin token.")

    cache = request.app.state.guardrails.cache
    cache.clear()
    return {
        "message": "Statistics cache cleared successfully",
        "cache_stats": cache.get_stats(),
    }


@app.get("/api/dashboard/cache-stats", response_model=CacheStatsResponse)
def cache_stats(request: Request):
    guardrails = request.app.state.guardrails
    return {
        "cache": guardrails.cache.get_stats(),
        "active_rate_limited_clients": guardrails.rate_limiter.active_clients,
        "uptime_minutes": round((time.monotonic() - _process_started) / 60.0, 2),
    }
