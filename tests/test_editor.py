"""Tests for the microcycle editing flow."""
import pytest

from coachcycle.core.exceptions import TransportError
from coachcycle.schemas.mutations import (
    DeleteMicrocycle,
    ExerciseParameters,
    UpdateExerciseParameters,
)
from coachcycle.services.editor import FixedChoice, MicrocycleEditor, PropagationChoice

from tests.conftest import source_exercise


class RecordingPrompt:
    """Prompt that answers with a fixed choice and remembers being asked."""

    def __init__(self, choice):
        self.choice = choice
        self.asked = []

    async def choose(self, mutation, source_microcycle_id):
        self.asked.append((mutation.kind, source_microcycle_id))
        return self.choice


def update_reps(backend, reps="5"):
    exercise = source_exercise(backend)
    return UpdateExerciseParameters(exercise_id=exercise.id, parameters=ExerciseParameters(reps=reps))


class TestMicrocycleEditor:

    @pytest.mark.asyncio
    async def test_this_only(self, engine, backend):
        editor = MicrocycleEditor(engine, FixedChoice(PropagationChoice.THIS_ONLY))

        result = await editor.submit(update_reps(backend), 1)

        assert result.saved
        assert result.message == "Saved"
        assert source_exercise(backend, 2).reps == "8-12"

    @pytest.mark.asyncio
    async def test_this_and_posterior(self, engine, backend):
        editor = MicrocycleEditor(engine, FixedChoice(PropagationChoice.THIS_AND_POSTERIOR))

        result = await editor.submit(update_reps(backend), 1)

        assert result.message == "Saved and replicated to 2 of 2 microcycles"
        assert source_exercise(backend, 3).reps == "5"

    @pytest.mark.asyncio
    async def test_cancelled_prompt_writes_nothing(self, engine, backend):
        editor = MicrocycleEditor(engine, FixedChoice(None))

        result = await editor.submit(update_reps(backend), 1)

        assert result.cancelled
        assert not result.saved
        assert result.message == "Cancelled"
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_failed_save_is_reported(self, engine, backend):
        backend.write_failures[1] = TransportError("connection reset")
        editor = MicrocycleEditor(engine, FixedChoice(PropagationChoice.THIS_AND_POSTERIOR))

        result = await editor.submit(update_reps(backend), 1)

        assert not result.saved
        assert result.message == "Save failed: connection reset"

    @pytest.mark.asyncio
    async def test_delete_microcycle_never_asks(self, engine, backend):
        prompt = RecordingPrompt(PropagationChoice.THIS_AND_POSTERIOR)
        editor = MicrocycleEditor(engine, prompt)

        result = await editor.submit(DeleteMicrocycle(microcycle_id=2), 2)

        assert prompt.asked == []
        assert result.saved
        assert set(backend.microcycles) == {1, 3}
