"""Wiring of the backend client, cache and services for one client session."""
from dataclasses import dataclass

from coachcycle.config.settings import Settings, get_settings
from coachcycle.core.cache import CacheStore
from coachcycle.repositories.backend_repository import HttpProgramBackend
from coachcycle.repositories.base import ProgramBackend
from coachcycle.services.autofill import AutoFillPolicy
from coachcycle.services.cache_layer import CacheLayer
from coachcycle.services.catalog import CatalogService
from coachcycle.services.queries import ProgramQueryService
from coachcycle.services.replication import ReplicationEngine


@dataclass
class ServiceContainer:
    backend: ProgramBackend
    cache: CacheLayer
    queries: ProgramQueryService
    engine: ReplicationEngine
    catalog: CatalogService

    async def close(self) -> None:
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()


def build_container(
    backend: ProgramBackend | None = None,
    store: CacheStore | None = None,
    autofill: AutoFillPolicy | None = None,
    settings: Settings | None = None,
) -> ServiceContainer:
    settings = settings or get_settings()
    backend = backend if backend is not None else HttpProgramBackend()
    cache = CacheLayer(store=store, namespace=settings.cache_namespace)
    queries = ProgramQueryService(backend, cache)
    engine = ReplicationEngine(backend, cache, queries=queries, autofill=autofill, settings=settings)
    return ServiceContainer(
        backend=backend,
        cache=cache,
        queries=queries,
        engine=engine,
        catalog=CatalogService(backend, cache),
    )
