"""
Health check endpoints for Kubernetes probes.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from cassandra_operator.config.redis import RedisConnection
from cassandra_operator.config.settings import settings

router = APIRouter()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _runtime(request: Request):
    return getattr(request.app.state, "runtime", None)


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    Returns current status and version.
    """
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": _timestamp(),
    }


@router.get("/live")
async def liveness():
    """Kubernetes liveness probe."""
    return {"status": "alive", "timestamp": _timestamp()}


@router.get("/ready")
async def readiness(request: Request):
    """
    Kubernetes readiness probe.
    Ready once the Kubernetes client and the worker are up and, with leader
    election enabled, Redis answers.
    """
    runtime = _runtime(request)
    kubernetes_ready = runtime is not None and runtime.started
    redis_ready = await RedisConnection.ping() if settings.leader_election_enabled else True
    leader = runtime.leader.is_leader if runtime is not None and runtime.leader is not None else None

    content = {
        "status": "ready" if kubernetes_ready and redis_ready else "not_ready",
        "kubernetes": "healthy" if kubernetes_ready else "unavailable",
        "redis": "healthy" if redis_ready else "unhealthy",
        "leader": leader,
        "timestamp": _timestamp(),
    }
    if not (kubernetes_ready and redis_ready):
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=content)
    return content


@router.get("/startup")
async def startup(request: Request):
    """Kubernetes startup probe."""
    runtime = _runtime(request)
    if runtime is None or not runtime.started:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "starting", "timestamp": _timestamp()},
        )
    return {"status": "started", "timestamp": _timestamp()}
