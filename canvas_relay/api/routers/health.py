"""Health check API router."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from canvas_relay.infra.database import check_database
from canvas_relay.infra.metrics import get_metrics_response
from canvas_relay.integrations.registry import FAMILY_NAMES

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health_check():
    """Service identity and the integration families it can route to."""
    return {
        "status": "ok",
        "service": "canvas-relay",
        "version": "1.0.0",
        "integrations": list(FAMILY_NAMES),
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    return {"status": "alive"}


@router.get("/health/ready", tags=["Health"])
def readiness_probe():
    """Readiness probe - the connection store must be reachable."""
    error = check_database()
    if error:
        return JSONResponse(status_code=503, content={"status": "not_ready", "error": error})
    return {"status": "ready"}


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
