"""Read-only query surface used by rendering components."""
from typing import Any

from coachcycle.core.cache import ALL
from coachcycle.models.program import CatalogExercise, Microcycle, Phase, Program, TrainingDay
from coachcycle.repositories.base import ProgramBackend
from coachcycle.services.cache_layer import CacheLayer


class ProgramQueryService:
    """
    Read-through accessors. A hit never touches the network; a miss fetches
    from the backend once, however many views ask concurrently.
    """

    def __init__(self, backend: ProgramBackend, cache: CacheLayer):
        self._backend = backend
        self._cache = cache

    async def get_microcycle(self, microcycle_id: int) -> Microcycle:
        return await self._cache.microcycles.get_or_fetch(
            microcycle_id, lambda: self._backend.fetch_microcycle(microcycle_id)
        )

    async def get_phase(self, phase_id: int) -> Phase:
        return await self._cache.phases.get_or_fetch(
            phase_id, lambda: self._backend.fetch_phase(phase_id)
        )

    async def get_program(self, program_id: int) -> Program:
        return await self._cache.programs.get_or_fetch(
            program_id,
            lambda: self._backend.fetch_program(program_id),
            on_populate=self._store_phases,
        )

    async def _store_phases(self, program: Program) -> None:
        # A program body carries full phase layouts; seed them so the
        # replication engine does not refetch them.
        for phase in program.phases:
            await self._cache.phases.set(phase.id, phase)

    async def get_catalog(self) -> list[CatalogExercise]:
        return await self._cache.catalog.get_or_fetch(ALL, self._backend.fetch_catalog)

    async def get_muscle_groups(self) -> list[str]:
        return await self._cache.muscle_groups.get_or_fetch(ALL, self._backend.fetch_muscle_groups)

    async def get_dashboard(self, student_id: int) -> dict[str, Any]:
        return await self._cache.dashboards.get_or_fetch(
            student_id, lambda: self._backend.fetch_dashboard(student_id)
        )

    async def get_history(self, student_id: int) -> list[TrainingDay]:
        return await self._cache.history.get_or_fetch(
            student_id, lambda: self._backend.fetch_history(student_id)
        )

    async def refresh_microcycle(self, microcycle_id: int) -> Microcycle:
        """Bypass the cache and store the authoritative copy."""
        microcycle = await self._backend.fetch_microcycle(microcycle_id)
        await self._cache.microcycles.set(microcycle_id, microcycle)
        return microcycle

    async def refresh_phase(self, phase_id: int) -> Phase:
        phase = await self._backend.fetch_phase(phase_id)
        await self._cache.phases.set(phase_id, phase)
        return phase
