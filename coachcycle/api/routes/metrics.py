from fastapi import APIRouter
from fastapi.responses import Response
from starlette.requests import Request

from coachcycle.config.settings import get_settings
from coachcycle.core.metrics import get_metrics


router = APIRouter()


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics(request: Request):
    return Response(
        content=get_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@router.get("/health", include_in_schema=False)
async def health_check():
    settings = get_settings()
    return {
        "status": "healthy",
        "app": settings.app_name,
        "cache_backend": settings.cache_backend,
    }
