"""Metrics endpoints for monitoring fetch success rates and sessions."""
from typing import Any, Dict, Optional
from datetime import datetime
import logging
from fastapi import APIRouter, FastAPI

from ..fetchers.engine import BrowserEngine
from ..metrics import MetricsCollector

logger = logging.getLogger(__name__)


def health_status(success_rate: float, average_load_time_ms: float, total_requests: int) -> str:
    """Classify engine health from its fetch metrics.

    Args:
        success_rate: Fraction of successful fetches
        average_load_time_ms: Mean fetch time in milliseconds
        total_requests: Number of fetches recorded

    Returns:
        "healthy", "degraded" or "unhealthy"
    """
    if total_requests == 0:
        return "healthy"
    status = "healthy"
    if success_rate < 0.8:
        status = "degraded"
    if success_rate < 0.5 or average_load_time_ms > 30000:
        status = "unhealthy"
    return status


def create_metrics_router(engine: BrowserEngine) -> APIRouter:
    """Create FastAPI router for engine metrics.

    Args:
        engine: Engine whose metrics and sessions to report

    Returns:
        FastAPI router with metrics endpoints
    """
    router = APIRouter(prefix="/metrics", tags=["metrics"])
    metrics: MetricsCollector = engine.metrics

    @router.get("/")
    async def get_metrics() -> Dict[str, Any]:
        """Get engine statistics and failure breakdowns."""
        stats = engine.stats()
        snapshot = metrics.snapshot()
        return {
            "engine": {
                "active_sessions": stats.active_sessions,
                "total_requests": stats.total_requests,
                "average_load_time_ms": stats.average_load_time,
                "success_rate": stats.success_rate,
            },
            "errors": {
                "failed_requests": snapshot["failed_requests"],
                "failures_by_site": snapshot["failures_by_site"],
                "failures_by_type": snapshot["failures_by_type"],
                "blocked_by_site": snapshot["blocked_by_site"],
            },
            "uptime_seconds": snapshot["uptime_seconds"],
        }

    @router.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint.

        Returns:
            Health status and basic metrics
        """
        stats = engine.stats()
        return {
            "status": health_status(stats.success_rate, stats.average_load_time, stats.total_requests),
            "browser_running": engine.process.running,
            "uptime_seconds": metrics.uptime(),
            "success_rate": stats.success_rate,
            "average_load_time_ms": stats.average_load_time,
            "total_requests": stats.total_requests,
        }

    @router.get("/sessions")
    async def get_sessions() -> Dict[str, Any]:
        """List live sessions with their rotation counters."""
        now = datetime.now()
        sessions = []
        for session in engine.registry.sessions():
            sessions.append({
                "id": session.id,
                "site_name": session.config.site_name,
                "request_count": session.request_count,
                "age_minutes": round(session.age_minutes(now), 2),
                "last_activity": session.last_activity.isoformat(),
                "stealth": session.config.stealth,
            })
        return {"count": len(sessions), "sessions": sessions}

    @router.post("/reset")
    async def reset_metrics() -> Dict[str, str]:
        """Reset all counters (for testing/debugging)."""
        metrics.reset()
        return {"message": "Metrics reset successfully"}

    return router


def create_app(engine: Optional[BrowserEngine] = None) -> FastAPI:
    """Create and configure the FastAPI app.

    Args:
        engine: Engine to monitor; a new one when omitted
    """
    engine = engine or BrowserEngine()
    app = FastAPI(
        title="talentradar",
        version="1.0",
        description="Browser fetch engine metrics",
    )
    app.state.engine = engine
    app.include_router(create_metrics_router(engine))

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close sessions and the browser on shutdown."""
        await engine.shutdown()

    logger.info("Metrics available at /metrics, health check at /metrics/health")
    return app
