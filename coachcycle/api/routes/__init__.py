"""API routes module."""
from coachcycle.api.routes.cache import router as cache_router
from coachcycle.api.routes.catalog import router as catalog_router
from coachcycle.api.routes.metrics import router as metrics_router
from coachcycle.api.routes.microcycles import router as microcycles_router
from coachcycle.api.routes.students import router as students_router

__all__ = [
    "cache_router",
    "catalog_router",
    "metrics_router",
    "microcycles_router",
    "students_router",
]
