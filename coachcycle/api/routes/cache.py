from fastapi import APIRouter, Depends, status

from coachcycle.api.routes.dependencies import get_container
from coachcycle.services.container import ServiceContainer

router = APIRouter()


@router.post("/invalidate-all", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_all(container: ServiceContainer = Depends(get_container)):
    """Drop every cached entry (logout or account switch)."""
    await container.cache.invalidate_all()
