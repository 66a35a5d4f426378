"""Main FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coachcycle import __version__
from coachcycle.config.settings import get_settings
from coachcycle.core.error_handlers import domain_error_handler
from coachcycle.core.exceptions import DomainError
from coachcycle.core.logging import configure_logging, get_logger
from coachcycle.core.metrics import set_app_info
from coachcycle.middleware.request_id import RequestIDMiddleware
from coachcycle.services.container import ServiceContainer, build_container

logger = get_logger(__name__)


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        if getattr(app.state, "container", None) is None:
            app.state.container = build_container(settings=settings)
        set_app_info(__version__, "debug" if settings.debug else "production")
        logger.info(
            "startup",
            backend=settings.backend_base_url,
            cache_backend=settings.cache_backend,
            autofill_mode=settings.autofill_mode,
        )
        yield
        await app.state.container.close()

    app = FastAPI(
        title=settings.app_name,
        description="Program replication and client cache engine for periodized training programs",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)
    app.add_exception_handler(DomainError, domain_error_handler)

    from coachcycle.api.routes import (
        cache_router,
        catalog_router,
        metrics_router,
        microcycles_router,
        students_router,
    )

    app.include_router(metrics_router, tags=["Monitoring"])
    app.include_router(microcycles_router, tags=["Programs"])
    app.include_router(catalog_router, prefix="/catalog", tags=["Catalog"])
    app.include_router(students_router, prefix="/students", tags=["Students"])
    app.include_router(cache_router, prefix="/cache", tags=["Cache"])

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("coachcycle.main:create_app", factory=True, host="0.0.0.0", port=8000)
