"""Mutation requests accepted by the replication engine."""
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from coachcycle.models.program import EntityModel


class ExerciseParameters(EntityModel):
    """Cycle-local exercise parameters. ``None`` means "leave unchanged"."""
    series: str | None = None
    reps: str | None = None
    rest: str | None = None
    expected_effort: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SetFields(EntityModel):
    """Editable set fields. ``None`` means "leave unchanged"."""
    reps: str | None = None
    expected_effort: str | None = None
    is_amrap: bool | None = None
    amrap_instruction: str | None = None
    amrap_notes: str | None = None

    def changes(self) -> dict[str, Any]:
        changes = self.model_dump(exclude_none=True)
        if changes.get("is_amrap") is False:
            changes["amrap_instruction"] = None
            changes["amrap_notes"] = None
        return changes


class AddExercise(EntityModel):
    kind: Literal["add_exercise"] = "add_exercise"
    day_id: int | None = None
    catalog_id: int | None = None
    parameters: ExerciseParameters = Field(default_factory=ExerciseParameters)
    initial_sets: list[SetFields] | None = None


class UpdateExerciseParameters(EntityModel):
    kind: Literal["update_exercise_parameters"] = "update_exercise_parameters"
    exercise_id: int
    parameters: ExerciseParameters


class UpdateSet(EntityModel):
    kind: Literal["update_set"] = "update_set"
    exercise_id: int
    set_order: int
    fields: SetFields


class AddSet(EntityModel):
    kind: Literal["add_set"] = "add_set"
    exercise_id: int
    # None appends after the last set
    after_order: int | None = None
    seed_from_first_set: bool = True


class RemoveSet(EntityModel):
    kind: Literal["remove_set"] = "remove_set"
    exercise_id: int
    set_order: int


class DeleteExercise(EntityModel):
    kind: Literal["delete_exercise"] = "delete_exercise"
    exercise_id: int
    # Alignment keys from an earlier outcome, used once the source row is gone
    day_number: int | None = None
    catalog_id: int | None = None


class DeleteMicrocycle(EntityModel):
    kind: Literal["delete_microcycle"] = "delete_microcycle"
    microcycle_id: int


Mutation = Annotated[
    Union[
        AddExercise,
        UpdateExerciseParameters,
        UpdateSet,
        AddSet,
        RemoveSet,
        DeleteExercise,
        DeleteMicrocycle,
    ],
    Field(discriminator="kind"),
]

DELETION_KINDS = frozenset({"delete_exercise", "remove_set"})


class MutationRequest(BaseModel):
    mutation: Mutation
    propagate: bool = False


class CatalogExerciseCreate(EntityModel):
    name: str = Field(..., min_length=1)
    muscle_group: str = Field(..., min_length=1)
    video_url: str | None = None
