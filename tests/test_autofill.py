"""Tests for first-set auto-fill policies."""
import pytest

from coachcycle.config.settings import Settings
from coachcycle.core.cache import InMemoryCacheStore
from coachcycle.models.program import Exercise, TrainingSet
from coachcycle.schemas.mutations import DeleteExercise, RemoveSet, SetFields, UpdateSet
from coachcycle.services.autofill import (
    SentinelAutoFill,
    TouchedAutoFill,
    build_autofill_policy,
    plan_autofill,
)
from coachcycle.services.container import build_container

from tests.conftest import source_exercise

DEFAULTS = {"reps": "8-12", "expected_effort": "2"}


def exercise_with(*sets: tuple[str, str]) -> Exercise:
    return Exercise(
        id=1,
        catalog_id=42,
        sets=[
            TrainingSet(id=10 + order, order=order, reps=reps, expected_effort=effort)
            for order, (reps, effort) in enumerate(sets)
        ],
    )


class TestPlanAutofill:
    """Which later sets receive the first set's new values."""

    def test_copies_to_default_and_empty_sets(self):
        exercise = exercise_with(("8-12", "2"), ("8-12", "2"), ("", ""), ("6", "3"))
        policy = SentinelAutoFill(DEFAULTS)

        plan = plan_autofill(exercise, exercise.set_at(0), {"reps": "10"}, policy)

        assert [(s.order, fill) for s, fill in plan] == [(1, {"reps": "10"}), (2, {"reps": "10"})]

    def test_unchanged_value_copies_nothing(self):
        exercise = exercise_with(("8-12", "2"), ("", ""))

        plan = plan_autofill(exercise, exercise.set_at(0), {"reps": "8-12"}, SentinelAutoFill(DEFAULTS))

        assert plan == []

    def test_non_autofill_fields_ignored(self):
        exercise = exercise_with(("8-12", "2"), ("8-12", "2"))

        plan = plan_autofill(exercise, exercise.set_at(0), {"is_amrap": True}, SentinelAutoFill(DEFAULTS))

        assert plan == []

    def test_only_changed_fields_are_copied(self):
        exercise = exercise_with(("8-12", "2"), ("8-12", "2"))

        plan = plan_autofill(
            exercise,
            exercise.set_at(0),
            {"reps": "8-12", "expected_effort": "4"},
            SentinelAutoFill(DEFAULTS),
        )

        assert [fill for _, fill in plan] == [{"expected_effort": "4"}]

    def test_sets_already_at_new_value_are_left_alone(self):
        exercise = exercise_with(("8-12", "2"), ("10", "2"))

        plan = plan_autofill(exercise, exercise.set_at(0), {"reps": "10"}, TouchedAutoFill(DEFAULTS))

        assert plan == []


class TestTouchedAutoFill:
    """Edit tracking policy."""

    def test_recorded_edits_are_protected(self):
        exercise = exercise_with(("8-12", "2"), ("8-12", "2"), ("8-12", "2"))
        policy = TouchedAutoFill(DEFAULTS)
        policy.record_edit(exercise.set_at(1), ["reps"])

        plan = plan_autofill(exercise, exercise.set_at(0), {"reps": "5", "expected_effort": "3"}, policy)

        assert [(s.order, fill) for s, fill in plan] == [
            (1, {"expected_effort": "3"}),
            (2, {"reps": "5", "expected_effort": "3"}),
        ]

    def test_customized_value_without_recorded_edit_survives(self):
        exercise = exercise_with(("8-12", "2"), ("6", "2"), ("8-12", "2"))

        plan = plan_autofill(exercise, exercise.set_at(0), {"reps": "5"}, TouchedAutoFill(DEFAULTS))

        assert [(s.order, fill) for s, fill in plan] == [(2, {"reps": "5"})]

    def test_forget_drops_edit_records_of_removed_sets(self):
        policy = TouchedAutoFill(DEFAULTS)
        policy.record_edit(TrainingSet(id=3, order=1), ["reps", "expected_effort"])
        policy.record_edit(TrainingSet(id=4, order=2), ["reps"])

        policy.forget([3])

        assert not policy.is_touched(3, "reps")
        assert not policy.is_touched(3, "expected_effort")
        assert policy.is_touched(4, "reps")

    def test_only_autofill_fields_are_tracked(self):
        policy = TouchedAutoFill(DEFAULTS)
        policy.record_edit(TrainingSet(id=3, order=1), ["reps", "amrap_notes"])

        assert policy.is_touched(3, "reps")
        assert not policy.is_touched(3, "amrap_notes")

    def test_unsaved_sets_are_never_protected(self):
        policy = TouchedAutoFill(DEFAULTS)
        unsaved = TrainingSet(order=1)
        policy.record_edit(unsaved, ["reps"])

        assert policy.should_fill(unsaved, "reps")


class TestPolicySelection:
    """Policy built from settings."""

    def test_sentinel_by_default(self):
        policy = build_autofill_policy(Settings(_env_file=None))

        assert isinstance(policy, SentinelAutoFill)
        assert policy.defaults == DEFAULTS

    def test_touched_mode(self):
        policy = build_autofill_policy(Settings(_env_file=None, autofill_mode="touched"))

        assert isinstance(policy, TouchedAutoFill)
        assert policy.defaults == DEFAULTS


class TestEngineWithTouchedPolicy:
    """Edits made through the engine feed the touched policy."""

    @pytest.mark.asyncio
    async def test_coach_edit_survives_later_first_set_change(self, backend, settings):
        container = build_container(
            backend=backend,
            store=InMemoryCacheStore(),
            autofill=TouchedAutoFill(DEFAULTS),
            settings=settings,
        )
        exercise = source_exercise(backend)

        # Typing the default back in still counts as an edit
        await container.engine.apply(
            UpdateSet(exercise_id=exercise.id, set_order=2, fields=SetFields(reps="8-12")),
            source_microcycle_id=1,
        )
        await container.engine.apply(
            UpdateSet(exercise_id=exercise.id, set_order=0, fields=SetFields(reps="4")),
            source_microcycle_id=1,
        )

        assert [s.reps for s in source_exercise(backend).ordered_sets()] == ["4", "4", "8-12"]

    @pytest.mark.asyncio
    async def test_customized_set_survives_without_recorded_edit(self, backend, settings):
        policy = TouchedAutoFill(DEFAULTS)
        container = build_container(backend=backend, store=InMemoryCacheStore(), autofill=policy, settings=settings)
        exercise = source_exercise(backend)
        exercise.set_at(1).reps = "6"

        await container.engine.apply(
            UpdateSet(exercise_id=exercise.id, set_order=0, fields=SetFields(reps="10-15")),
            source_microcycle_id=1,
        )

        assert [s.reps for s in source_exercise(backend).ordered_sets()] == ["10-15", "6", "10-15"]

    @pytest.mark.asyncio
    async def test_removed_sets_are_forgotten(self, backend, settings):
        policy = TouchedAutoFill(DEFAULTS)
        container = build_container(backend=backend, store=InMemoryCacheStore(), autofill=policy, settings=settings)
        exercise = source_exercise(backend)
        last_id = exercise.set_at(2).id
        first_id = exercise.set_at(0).id

        await container.engine.apply(
            UpdateSet(exercise_id=exercise.id, set_order=2, fields=SetFields(reps="5")),
            source_microcycle_id=1,
        )
        await container.engine.apply(
            UpdateSet(exercise_id=exercise.id, set_order=0, fields=SetFields(expected_effort="3")),
            source_microcycle_id=1,
        )
        assert policy.is_touched(last_id, "reps")

        await container.engine.apply(RemoveSet(exercise_id=exercise.id, set_order=2), source_microcycle_id=1)
        assert not policy.is_touched(last_id, "reps")
        assert policy.is_touched(first_id, "expected_effort")

        await container.engine.apply(DeleteExercise(exercise_id=exercise.id), source_microcycle_id=1)
        assert not policy.is_touched(first_id, "expected_effort")
