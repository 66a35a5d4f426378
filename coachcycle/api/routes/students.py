"""API routes for per-student aggregates."""
from typing import Any

from fastapi import APIRouter, Depends, Request

from coachcycle.api.routes.dependencies import get_container, response_meta
from coachcycle.models.program import TrainingDay
from coachcycle.schemas.base import APIResponse
from coachcycle.services.container import ServiceContainer

router = APIRouter()


@router.get("/{student_id}/dashboard", response_model=APIResponse[dict[str, Any]])
async def get_dashboard(
    student_id: int,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    dashboard = await container.queries.get_dashboard(student_id)
    return APIResponse[dict[str, Any]](data=dashboard, meta=response_meta(request))


@router.get("/{student_id}/history", response_model=APIResponse[list[TrainingDay]])
async def get_history(
    student_id: int,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    history = await container.queries.get_history(student_id)
    return APIResponse[list[TrainingDay]](data=history, meta=response_meta(request))
