"""
Program entity graph as delivered by the backing service.

Program (macrocycle) -> Phase (mesocycle) -> Microcycle -> Day -> Exercise -> Set.

Children arrive in whatever order the backend produced them; the ``ordered_*``
accessors return them in canonical order without touching the stored lists.
Ids are assigned by the backend and are ``None`` for local copies that have
not been persisted yet.
"""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EntityModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class CatalogExercise(EntityModel):
    """Coach-owned, program-independent exercise definition."""
    id: int
    name: str
    muscle_group: str
    video_url: str | None = None


class TrainingSet(EntityModel):
    id: int | None = None
    order: int
    reps: str = ""
    expected_effort: str = ""
    is_amrap: bool = False
    amrap_instruction: str | None = None
    amrap_notes: str | None = None


class Exercise(EntityModel):
    """Exercise instance inside a day, aligned across microcycles by ``catalog_id``."""
    id: int | None = None
    day_id: int | None = None
    catalog_id: int
    order: int = 0
    series: str | None = None
    reps: str | None = None
    rest: str | None = None
    expected_effort: str | None = None
    catalog: CatalogExercise | None = None
    sets: list[TrainingSet] = Field(default_factory=list)

    def ordered_sets(self) -> list[TrainingSet]:
        return sorted(self.sets, key=lambda s: (s.order, s.id or 0))

    def set_at(self, order: int) -> TrainingSet | None:
        for training_set in self.sets:
            if training_set.order == order:
                return training_set
        return None


class Day(EntityModel):
    id: int
    microcycle_id: int | None = None
    day_number: int
    name: str | None = None
    is_rest_day: bool = False
    exercises: list[Exercise] = Field(default_factory=list)

    def ordered_exercises(self) -> list[Exercise]:
        return sorted(self.exercises, key=lambda e: (e.order, e.id or 0))

    def exercise_by_catalog(self, catalog_id: int) -> Exercise | None:
        """First exercise (in canonical order) referencing ``catalog_id``."""
        for exercise in self.ordered_exercises():
            if exercise.catalog_id == catalog_id:
                return exercise
        return None

    def next_exercise_order(self) -> int:
        return max((e.order for e in self.exercises), default=0) + 1


class Microcycle(EntityModel):
    id: int
    phase_id: int | None = None
    student_id: int | None = None
    name: str | None = None
    position: int = 0
    is_deload: bool = False
    days: list[Day] = Field(default_factory=list)

    def ordered_days(self) -> list[Day]:
        return sorted(self.days, key=lambda d: (d.day_number, d.id))

    def day_by_number(self, day_number: int) -> Day | None:
        for day in self.days:
            if day.day_number == day_number:
                return day
        return None

    def day_by_id(self, day_id: int) -> Day | None:
        for day in self.days:
            if day.id == day_id:
                return day
        return None

    def find_exercise(self, exercise_id: int) -> tuple[Day, Exercise] | None:
        for day in self.days:
            for exercise in day.exercises:
                if exercise.id == exercise_id:
                    return day, exercise
        return None


class Phase(EntityModel):
    id: int
    program_id: int | None = None
    name: str | None = None
    position: int = 0
    microcycles: list[Microcycle] = Field(default_factory=list)


class Program(EntityModel):
    id: int
    student_id: int | None = None
    name: str | None = None
    phases: list[Phase] = Field(default_factory=list)


class TrainingDay(EntityModel):
    """One logged day in a student's training history."""
    model_config = ConfigDict(extra="allow")

    id: int
    day_number: int
    day_name: str | None = None
    date: str | None = None
    is_rest_day: bool = False
    exercises: list[dict[str, Any]] = Field(default_factory=list)
    macrocycle_name: str | None = None
    mesocycle_name: str | None = None
    microcycle_name: str | None = None
    total_exercises: int = 0
    total_sets: int = 0
