"""
Health checks for the gateway
Monitors mirror storage, IPFS gateways, side maps and the host process
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from .config import settings
from .logging_config import get_logger

logger = get_logger(__name__)

health_router = APIRouter()


class HealthStatus(BaseModel):
    """Health status response model"""
    status: str  # "healthy", "degraded", "unhealthy"
    timestamp: datetime
    checks: Dict[str, Any]
    version: str
    uptime_seconds: float


class ComponentHealth(BaseModel):
    """Individual component health"""
    name: str
    status: str
    response_time_ms: float
    message: str
    details: Dict[str, Any] = {}


SERVICE_START_TIME = time.time()


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)


async def check_storage_health(storage) -> ComponentHealth:
    """Check the durable mirror bucket is reachable"""
    start_time = time.perf_counter()

    if storage is None:
        return ComponentHealth(
            name="storage",
            status="degraded",
            response_time_ms=0.0,
            message="Durable mirror not configured",
        )

    try:
        await storage.ping()
        return ComponentHealth(
            name="storage",
            status="healthy",
            response_time_ms=_elapsed_ms(start_time),
            message="Storage is healthy",
            details={"bucket": getattr(storage, "bucket", None)},
        )
    except Exception as e:
        logger.error(f"Storage health check failed: {e}")
        return ComponentHealth(
            name="storage",
            status="unhealthy",
            response_time_ms=_elapsed_ms(start_time),
            message=f"Storage check failed: {e}",
            details={"error": str(e)},
        )


async def check_gateway_health(resolver) -> ComponentHealth:
    """Resolve the apex metadata document through the gateway chain"""
    start_time = time.perf_counter()

    try:
        await resolver.resolve_json("0.json")
        return ComponentHealth(
            name="gateways",
            status="healthy",
            response_time_ms=_elapsed_ms(start_time),
            message="Gateways are reachable",
            details={
                "gateways": resolver.gateways,
                "upstream_attempts": resolver.upstream_attempts,
                "exhaustions": resolver.exhaustions,
            },
        )
    except Exception as e:
        logger.error(f"Gateway health check failed: {e}")
        return ComponentHealth(
            name="gateways",
            status="unhealthy",
            response_time_ms=_elapsed_ms(start_time),
            message=f"No gateway answered: {e}",
            details={"gateways": resolver.gateways, "error": str(e)},
        )


async def check_sidemap_health(sidemaps) -> ComponentHealth:
    """Side maps are optional; empty maps only degrade"""
    start_time = time.perf_counter()

    counts = await sidemaps.counts()
    status = "healthy" if counts["mintMapCount"] else "degraded"
    return ComponentHealth(
        name="sidemaps",
        status=status,
        response_time_ms=_elapsed_ms(start_time),
        message="Side maps loaded" if status == "healthy" else "Mint map is empty",
        details=counts,
    )


async def check_process_health() -> ComponentHealth:
    """Host resource usage"""
    start_time = time.perf_counter()

    try:
        import psutil

        memory = psutil.virtual_memory()
        process = psutil.Process()
        status = "degraded" if memory.percent > 85 else "healthy"
        return ComponentHealth(
            name="process",
            status=status,
            response_time_ms=_elapsed_ms(start_time),
            message="Process is healthy" if status == "healthy" else f"High memory usage: {memory.percent}%",
            details={
                "memory_percent": round(memory.percent, 2),
                "rss_mb": round(process.memory_info().rss / 1024 / 1024, 2),
                "uptime_seconds": round(time.time() - SERVICE_START_TIME, 2),
            },
        )
    except Exception as e:
        logger.error(f"Process health check failed: {e}")
        return ComponentHealth(
            name="process",
            status="unhealthy",
            response_time_ms=_elapsed_ms(start_time),
            message=f"Process health check failed: {e}",
            details={"error": str(e)},
        )


@health_router.get("/health")
async def health():
    """Liveness probe"""
    return {"ok": True, "time": int(time.time() * 1000)}


@health_router.get("/health/detailed", response_model=HealthStatus)
async def get_health_status(request: Request):
    """Health of every component, checked concurrently"""
    services = request.app.state.services
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting")

    checks = await asyncio.gather(
        check_storage_health(services.storage),
        check_gateway_health(services.resolver),
        check_sidemap_health(services.sidemaps),
        check_process_health(),
        return_exceptions=True,
    )

    health_checks = {}
    overall_status = "healthy"
    for check in checks:
        if isinstance(check, Exception):
            logger.error(f"Health check failed: {check}")
            health_checks["unknown"] = {"status": "unhealthy", "message": str(check)}
            overall_status = "unhealthy"
            continue

        health_checks[check.name] = {
            "status": check.status,
            "response_time_ms": check.response_time_ms,
            "message": check.message,
            "details": check.details,
        }
        if check.status == "unhealthy":
            overall_status = "unhealthy"
        elif check.status == "degraded" and overall_status == "healthy":
            overall_status = "degraded"

    return HealthStatus(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        checks=health_checks,
        version=settings.VERSION,
        uptime_seconds=round(time.time() - SERVICE_START_TIME, 2),
    )
