"""
Shared fixtures: an in-memory backing service that records every call.

The fake keeps one phase of microcycles. Writes mutate the stored rows;
fetches return deep copies, like a real backend returning fresh JSON.
"""
import asyncio
import itertools
from typing import Any

import pytest

from coachcycle.config.settings import Settings
from coachcycle.core.cache import InMemoryCacheStore
from coachcycle.core.exceptions import DomainError, NotFoundError
from coachcycle.models.program import (
    CatalogExercise,
    Day,
    Exercise,
    Microcycle,
    Phase,
    Program,
    TrainingDay,
    TrainingSet,
)
from coachcycle.repositories.base import CreatedExercise
from coachcycle.schemas.mutations import CatalogExerciseCreate
from coachcycle.schemas.replication import ReplicateForwardResult
from coachcycle.services.autofill import SentinelAutoFill
from coachcycle.services.cache_layer import CacheLayer
from coachcycle.services.container import ServiceContainer, build_container

PROGRAM_ID = 1
PHASE_ID = 10
STUDENT_ID = 7
CATALOG_ID = 42


class FakeBackend:
    """In-memory ``ProgramBackend`` with call recording and failure injection."""

    def __init__(self):
        self._ids = itertools.count(1000)
        self.phase = Phase(id=PHASE_ID, program_id=PROGRAM_ID, name="Accumulation")
        self.microcycles: dict[int, Microcycle] = {}
        self.catalog = [
            CatalogExercise(id=CATALOG_ID, name="Back Squat", muscle_group="Legs"),
            CatalogExercise(id=43, name="Bench Press", muscle_group="Chest"),
        ]
        self.dashboards: dict[int, dict[str, Any]] = {STUDENT_ID: {"completedSessions": 3}}
        self.history: dict[int, list[TrainingDay]] = {
            STUDENT_ID: [TrainingDay(id=1, day_number=1, day_name="Lower", total_sets=9)]
        }
        self.calls: list[tuple] = []
        # microcycle id -> error raised by any write landing in that microcycle
        self.write_failures: dict[int, Exception] = {}
        # microcycle id -> error raised when fetching it
        self.fetch_failures: dict[int, DomainError] = {}
        # call name -> errors raised, one per call, by the next calls of that name
        self.fail_next: dict[str, list[Exception]] = {}
        self.fetch_delay = 0.0

    # -- fixture helpers -------------------------------------------------

    def next_id(self) -> int:
        return next(self._ids)

    def add_microcycle(self, microcycle: Microcycle) -> Microcycle:
        microcycle.phase_id = PHASE_ID
        microcycle.student_id = STUDENT_ID
        self.microcycles[microcycle.id] = microcycle
        return microcycle

    def writes(self, name: str | None = None) -> list[tuple]:
        reads = {"fetch_microcycle", "fetch_phase", "fetch_program", "fetch_catalog",
                 "fetch_muscle_groups", "fetch_dashboard", "fetch_history"}
        return [c for c in self.calls if c[0] not in reads and (name is None or c[0] == name)]

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)

    def exercise_in(self, microcycle_id: int, day_number: int, catalog_id: int) -> Exercise | None:
        day = self.microcycles[microcycle_id].day_by_number(day_number)
        return day.exercise_by_catalog(catalog_id) if day else None

    def _locate_exercise(self, exercise_id: int) -> tuple[Microcycle, Day, Exercise]:
        for microcycle in self.microcycles.values():
            for day in microcycle.days:
                for exercise in day.exercises:
                    if exercise.id == exercise_id:
                        return microcycle, day, exercise
        raise NotFoundError("exercise", f"Exercise {exercise_id} not found")

    def _locate_set(self, set_id: int) -> tuple[Microcycle, Exercise, TrainingSet]:
        for microcycle in self.microcycles.values():
            for day in microcycle.days:
                for exercise in day.exercises:
                    for training_set in exercise.sets:
                        if training_set.id == set_id:
                            return microcycle, exercise, training_set
        raise NotFoundError("set", f"Set {set_id} not found")

    def _locate_day(self, day_id: int) -> tuple[Microcycle, Day]:
        for microcycle in self.microcycles.values():
            day = microcycle.day_by_id(day_id)
            if day is not None:
                return microcycle, day
        raise NotFoundError("day", f"Day {day_id} not found")

    def _check_write(self, microcycle_id: int, call: str | None = None) -> None:
        error = self.write_failures.get(microcycle_id)
        if error is not None:
            raise error
        pending = self.fail_next.get(call)
        if pending:
            raise pending.pop(0)

    # -- reads -----------------------------------------------------------

    async def fetch_microcycle(self, microcycle_id: int) -> Microcycle:
        self.calls.append(("fetch_microcycle", microcycle_id))
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if microcycle_id in self.fetch_failures:
            raise self.fetch_failures[microcycle_id]
        if microcycle_id not in self.microcycles:
            raise NotFoundError("microcycle", f"Microcycle {microcycle_id} not found")
        return self.microcycles[microcycle_id].model_copy(deep=True)

    async def fetch_phase(self, phase_id: int) -> Phase:
        self.calls.append(("fetch_phase", phase_id))
        if phase_id != self.phase.id:
            raise NotFoundError("phase", f"Phase {phase_id} not found")
        microcycles = [
            m.model_copy(update={"days": []}, deep=True) for m in self.microcycles.values()
        ]
        return self.phase.model_copy(update={"microcycles": microcycles}, deep=True)

    async def fetch_program(self, program_id: int) -> Program:
        self.calls.append(("fetch_program", program_id))
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        phase = await self.fetch_phase(self.phase.id)
        return Program(id=PROGRAM_ID, student_id=STUDENT_ID, name="Block 1", phases=[phase])

    async def fetch_catalog(self) -> list[CatalogExercise]:
        self.calls.append(("fetch_catalog",))
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        return [c.model_copy() for c in self.catalog]

    async def fetch_muscle_groups(self) -> list[str]:
        self.calls.append(("fetch_muscle_groups",))
        return sorted({c.muscle_group for c in self.catalog})

    async def fetch_dashboard(self, student_id: int) -> dict[str, Any]:
        self.calls.append(("fetch_dashboard", student_id))
        return dict(self.dashboards.get(student_id, {}))

    async def fetch_history(self, student_id: int) -> list[TrainingDay]:
        self.calls.append(("fetch_history", student_id))
        return [d.model_copy() for d in self.history.get(student_id, [])]

    # -- writes ----------------------------------------------------------

    async def create_catalog_exercise(self, data: CatalogExerciseCreate) -> CatalogExercise:
        self.calls.append(("create_catalog_exercise", data.name))
        created = CatalogExercise(id=self.next_id(), **data.model_dump())
        self.catalog.append(created)
        return created

    async def create_exercise(
        self,
        day_id: int,
        catalog_id: int,
        parameters: dict[str, Any],
        sets: list[dict[str, Any]],
        propagate: bool = False,
    ) -> CreatedExercise:
        microcycle, day = self._locate_day(day_id)
        self.calls.append(("create_exercise", microcycle.id, day_id, catalog_id))
        self._check_write(microcycle.id)
        exercise = Exercise(
            id=self.next_id(),
            day_id=day_id,
            catalog_id=catalog_id,
            sets=[TrainingSet(id=self.next_id(), **s) for s in sets],
            **parameters,
        )
        day.exercises.append(exercise)
        return CreatedExercise(exercise=exercise.model_copy(deep=True))

    async def update_exercise(self, exercise_id: int, parameters: dict[str, Any]) -> Exercise:
        microcycle, _, exercise = self._locate_exercise(exercise_id)
        self.calls.append(("update_exercise", microcycle.id, exercise_id, dict(parameters)))
        self._check_write(microcycle.id)
        for key, value in parameters.items():
            setattr(exercise, key, value)
        return exercise.model_copy(deep=True)

    async def delete_exercise(self, exercise_id: int) -> None:
        try:
            microcycle, day, exercise = self._locate_exercise(exercise_id)
        except NotFoundError:
            self.calls.append(("delete_exercise", None, exercise_id))
            return
        self.calls.append(("delete_exercise", microcycle.id, exercise_id))
        self._check_write(microcycle.id)
        day.exercises.remove(exercise)

    async def create_set(self, exercise_id: int, fields: dict[str, Any]) -> TrainingSet:
        microcycle, _, exercise = self._locate_exercise(exercise_id)
        self.calls.append(("create_set", microcycle.id, exercise_id, dict(fields)))
        self._check_write(microcycle.id, "create_set")
        training_set = TrainingSet(id=self.next_id(), **fields)
        exercise.sets.append(training_set)
        return training_set.model_copy()

    async def update_set(self, set_id: int, fields: dict[str, Any]) -> TrainingSet:
        microcycle, _, training_set = self._locate_set(set_id)
        self.calls.append(("update_set", microcycle.id, set_id, dict(fields)))
        self._check_write(microcycle.id, "update_set")
        for key, value in fields.items():
            setattr(training_set, key, value)
        return training_set.model_copy()

    async def delete_set(self, set_id: int) -> None:
        try:
            microcycle, exercise, training_set = self._locate_set(set_id)
        except NotFoundError:
            self.calls.append(("delete_set", None, set_id))
            return
        self.calls.append(("delete_set", microcycle.id, set_id))
        self._check_write(microcycle.id)
        exercise.sets.remove(training_set)

    async def delete_microcycle(self, microcycle_id: int) -> None:
        self.calls.append(("delete_microcycle", microcycle_id))
        self._check_write(microcycle_id)
        self.microcycles.pop(microcycle_id, None)

    async def replicate_microcycle_forward(self, microcycle_id: int) -> ReplicateForwardResult:
        self.calls.append(("replicate_microcycle_forward", microcycle_id))
        source = self.microcycles[microcycle_id]
        later = [m for m in self.microcycles.values() if m.position > source.position]
        return ReplicateForwardResult(replicated_to=len(later))


def make_exercise(backend: FakeBackend, catalog_id: int = CATALOG_ID, sets: int = 3, reps: str = "8-12",
                  effort: str = "2", order: int = 1) -> Exercise:
    return Exercise(
        id=backend.next_id(),
        catalog_id=catalog_id,
        order=order,
        series=str(sets),
        reps=reps,
        rest="2",
        expected_effort=effort,
        sets=[
            TrainingSet(id=backend.next_id(), order=i, reps=reps, expected_effort=effort)
            for i in range(sets)
        ],
    )


def make_microcycle(backend: FakeBackend, microcycle_id: int, position: int,
                    day_numbers: tuple[int, ...] = (1,), catalog_ids: tuple[int, ...] = (CATALOG_ID,)) -> Microcycle:
    days = []
    for day_number in day_numbers:
        day_id = microcycle_id * 100 + day_number
        exercises = [make_exercise(backend, catalog_id=c, order=i + 1) for i, c in enumerate(catalog_ids)]
        for exercise in exercises:
            exercise.day_id = day_id
        days.append(Day(id=day_id, microcycle_id=microcycle_id, day_number=day_number, exercises=exercises))
    return backend.add_microcycle(
        Microcycle(id=microcycle_id, name=f"Week {position}", position=position, days=days)
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        cache_backend="memory",
        cache_namespace="test",
        autofill_mode="sentinel",
        replica_concurrency=4,
    )


@pytest.fixture
def backend() -> FakeBackend:
    """Phase with microcycles M1..M3 at positions 1..3; Day 1 holds catalog 42 with 3 sets of 8-12."""
    fake = FakeBackend()
    for position in (1, 2, 3):
        make_microcycle(fake, microcycle_id=position, position=position)
    return fake


@pytest.fixture
def container(backend: FakeBackend, settings: Settings) -> ServiceContainer:
    return build_container(
        backend=backend,
        store=InMemoryCacheStore(),
        autofill=SentinelAutoFill({"reps": "8-12", "expected_effort": "2"}),
        settings=settings,
    )


@pytest.fixture
def cache(container: ServiceContainer) -> CacheLayer:
    return container.cache


@pytest.fixture
def engine(container: ServiceContainer):
    return container.engine


def source_exercise(backend: FakeBackend, microcycle_id: int = 1, day_number: int = 1,
                    catalog_id: int = CATALOG_ID) -> Exercise:
    exercise = backend.exercise_in(microcycle_id, day_number, catalog_id)
    assert exercise is not None
    return exercise
