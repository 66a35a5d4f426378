"""Coach exercise catalog authoring."""
from coachcycle.core.events import MutationApplied
from coachcycle.core.logging import get_logger
from coachcycle.models.program import CatalogExercise
from coachcycle.repositories.base import ProgramBackend
from coachcycle.schemas.mutations import CatalogExerciseCreate
from coachcycle.services.cache_layer import CATALOG_KEYS, CacheLayer

logger = get_logger(__name__)


class CatalogService:
    def __init__(self, backend: ProgramBackend, cache: CacheLayer):
        self._backend = backend
        self._cache = cache

    async def create_exercise(self, data: CatalogExerciseCreate) -> CatalogExercise:
        """
        Add an exercise to the coach catalog.

        The catalog is shared by every program and read far more often than
        written, so both the list and the muscle-group index are dropped
        after the write lands.
        """
        created = await self._backend.create_catalog_exercise(data)
        await self._cache.invalidate(*CATALOG_KEYS)
        logger.info("catalog_exercise_created", catalog_id=created.id, muscle_group=created.muscle_group)
        await self._cache.publish(
            MutationApplied(kind="create_catalog_exercise", affected_keys=CATALOG_KEYS)
        )
        return created
