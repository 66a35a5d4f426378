"""API routes for the coach exercise catalog."""
from fastapi import APIRouter, Depends, Request, status

from coachcycle.api.routes.dependencies import get_container, response_meta
from coachcycle.models.program import CatalogExercise
from coachcycle.schemas.base import APIResponse
from coachcycle.schemas.mutations import CatalogExerciseCreate
from coachcycle.services.container import ServiceContainer

router = APIRouter()


@router.get("", response_model=APIResponse[list[CatalogExercise]])
async def list_catalog(request: Request, container: ServiceContainer = Depends(get_container)):
    catalog = await container.queries.get_catalog()
    return APIResponse[list[CatalogExercise]](data=catalog, meta=response_meta(request))


@router.get("/muscle-groups", response_model=APIResponse[list[str]])
async def list_muscle_groups(request: Request, container: ServiceContainer = Depends(get_container)):
    groups = await container.queries.get_muscle_groups()
    return APIResponse[list[str]](data=groups, meta=response_meta(request))


@router.post("", response_model=APIResponse[CatalogExercise], status_code=status.HTTP_201_CREATED)
async def create_catalog_exercise(
    body: CatalogExerciseCreate,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    created = await container.catalog.create_exercise(body)
    return APIResponse[CatalogExercise](data=created, meta=response_meta(request))
