from __future__ import annotations
from typing import Any, Protocol

from pydantic import BaseModel

from coachcycle.models.program import (
    CatalogExercise,
    Exercise,
    Microcycle,
    Phase,
    Program,
    TrainingDay,
    TrainingSet,
)
from coachcycle.schemas.mutations import CatalogExerciseCreate
from coachcycle.schemas.replication import ReplicateForwardResult


class CreatedExercise(BaseModel):
    exercise: Exercise
    replicated_count: int = 0


class ProgramBackend(Protocol):
    """
    Operations the engine consumes from the backing service.

    Field dictionaries use snake_case keys. Deletes treat a missing target
    as success. Every call may raise ``TransportError``; lookups raise
    ``NotFoundError`` for unknown ids.
    """

    async def fetch_microcycle(self, microcycle_id: int) -> Microcycle: ...

    async def fetch_phase(self, phase_id: int) -> Phase: ...

    async def fetch_program(self, program_id: int) -> Program: ...

    async def fetch_catalog(self) -> list[CatalogExercise]: ...

    async def fetch_muscle_groups(self) -> list[str]: ...

    async def fetch_dashboard(self, student_id: int) -> dict[str, Any]: ...

    async def fetch_history(self, student_id: int) -> list[TrainingDay]: ...

    async def create_catalog_exercise(self, data: CatalogExerciseCreate) -> CatalogExercise: ...

    async def create_exercise(
        self,
        day_id: int,
        catalog_id: int,
        parameters: dict[str, Any],
        sets: list[dict[str, Any]],
        propagate: bool = False,
    ) -> CreatedExercise: ...

    async def update_exercise(self, exercise_id: int, parameters: dict[str, Any]) -> Exercise: ...

    async def delete_exercise(self, exercise_id: int) -> None: ...

    async def create_set(self, exercise_id: int, fields: dict[str, Any]) -> TrainingSet: ...

    async def update_set(self, set_id: int, fields: dict[str, Any]) -> TrainingSet: ...

    async def delete_set(self, set_id: int) -> None: ...

    async def delete_microcycle(self, microcycle_id: int) -> None: ...

    async def replicate_microcycle_forward(self, microcycle_id: int) -> ReplicateForwardResult: ...
