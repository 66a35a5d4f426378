"""Process-wide cache of program, catalog and student aggregate data."""
from typing import Any

from coachcycle.config.settings import get_settings
from coachcycle.core.cache import (
    ALL,
    CacheKey,
    CacheKind,
    CacheStore,
    EntityCache,
    build_store,
)
from coachcycle.core.events import MutationApplied, MutationEvents
from coachcycle.core.logging import get_logger
from coachcycle.models.program import (
    CatalogExercise,
    Microcycle,
    Phase,
    Program,
    TrainingDay,
)

logger = get_logger(__name__)


class CacheLayer:
    """
    One ``EntityCache`` per entity kind, sharing a single store.

    Only the replication engine, the catalog service and explicit refreshes
    write here. Student dashboard and history entries are dropped whenever a
    mutation on that student's program is published.
    """

    def __init__(
        self,
        store: CacheStore | None = None,
        namespace: str | None = None,
        events: MutationEvents | None = None,
    ):
        self.store = store if store is not None else build_store()
        self.namespace = namespace or get_settings().cache_namespace
        self.events = events if events is not None else MutationEvents()

        self.microcycles: EntityCache[Microcycle] = self._entity(CacheKind.MICROCYCLE, Microcycle)
        self.phases: EntityCache[Phase] = self._entity(CacheKind.PHASE, Phase)
        self.programs: EntityCache[Program] = self._entity(CacheKind.PROGRAM, Program)
        self.catalog: EntityCache[list[CatalogExercise]] = self._entity(
            CacheKind.CATALOG, list[CatalogExercise]
        )
        self.muscle_groups: EntityCache[list[str]] = self._entity(CacheKind.MUSCLE_GROUPS, list[str])
        self.dashboards: EntityCache[dict[str, Any]] = self._entity(CacheKind.DASHBOARD, dict[str, Any])
        self.history: EntityCache[list[TrainingDay]] = self._entity(CacheKind.HISTORY, list[TrainingDay])

        self.events.subscribe(self._invalidate_student_aggregates)

    def _entity(self, kind: CacheKind, value_type: Any) -> EntityCache:
        return EntityCache(kind, value_type, self.store, self.namespace)

    def for_kind(self, kind: CacheKind) -> EntityCache:
        return {
            CacheKind.MICROCYCLE: self.microcycles,
            CacheKind.PHASE: self.phases,
            CacheKind.PROGRAM: self.programs,
            CacheKind.CATALOG: self.catalog,
            CacheKind.MUSCLE_GROUPS: self.muscle_groups,
            CacheKind.DASHBOARD: self.dashboards,
            CacheKind.HISTORY: self.history,
        }[kind]

    async def invalidate(self, *keys: CacheKey) -> None:
        for key in keys:
            await self.for_kind(key.kind).invalidate(key.id)

    async def invalidate_all(self) -> None:
        """Drop every entry of every kind (logout, account switch)."""
        for kind in CacheKind:
            await self.for_kind(kind).invalidate_all()
        logger.info("cache_cleared_all", namespace=self.namespace)

    async def publish(self, event: MutationApplied) -> None:
        await self.events.publish(event)

    async def _invalidate_student_aggregates(self, event: MutationApplied) -> None:
        if event.student_id is None:
            return
        await self.invalidate(
            CacheKey(CacheKind.DASHBOARD, event.student_id),
            CacheKey(CacheKind.HISTORY, event.student_id),
        )


def microcycle_key(microcycle_id: int) -> CacheKey:
    return CacheKey(CacheKind.MICROCYCLE, microcycle_id)


def phase_key(phase_id: int) -> CacheKey:
    return CacheKey(CacheKind.PHASE, phase_id)


CATALOG_KEYS = (CacheKey(CacheKind.CATALOG, ALL), CacheKey(CacheKind.MUSCLE_GROUPS, ALL))


def program_key(program_id: int) -> CacheKey:
    return CacheKey(CacheKind.PROGRAM, program_id)
