"""
Liveness, readiness and Prometheus endpoints
"""
from fastapi import APIRouter, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from paralegal_api.services.config import Settings
from paralegal_api.utils.errors import error_response

router = APIRouter(tags=["health"])


def dependency_checks(settings: Settings) -> dict:
    # Research is optional: handlers fall back to a placeholder source
    return {
        "models": "healthy" if settings.ANTHROPIC_API_KEY else "unconfigured",
        "store": "healthy" if settings.SUPABASE_URL else "unconfigured",
        "research": "healthy" if settings.PERPLEXITY_API_TOKEN else "degraded",
    }


@router.get("/health")
async def health(req: Request):
    return {"status": "healthy", "version": req.app.version}


@router.get("/health/live")
async def live():
    return {"status": "alive"}


@router.get("/health/ready")
async def ready(req: Request):
    """Ready once the model provider and the store are configured"""
    checks = dependency_checks(req.app.state.settings)
    if checks["models"] == "healthy" and checks["store"] == "healthy":
        return {"status": "ready", "checks": checks}
    return error_response(503, "not ready", checks=checks)


@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
