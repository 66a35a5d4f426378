"""
Microcycle editing flow.

Keeps the question "apply to this microcycle only, or to this and the
later ones?" out of the engine. A ``PropagationPrompt`` answers it (a
dialog in a UI, a request flag in the HTTP API, a fixed answer in tests)
and ``MicrocycleEditor`` turns the answer into an ``apply`` call and a
user-facing message.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from coachcycle.core.exceptions import DomainError
from coachcycle.core.logging import get_logger
from coachcycle.schemas.mutations import DeleteMicrocycle, Mutation
from coachcycle.schemas.replication import ReplicationOutcome
from coachcycle.services.replication import ReplicationEngine

logger = get_logger(__name__)


class PropagationChoice(str, Enum):
    THIS_ONLY = "this_only"
    THIS_AND_POSTERIOR = "this_and_posterior"


class PropagationPrompt(Protocol):
    async def choose(self, mutation: Mutation, source_microcycle_id: int) -> PropagationChoice | None:
        """Return the coach's choice, or ``None`` if the edit was cancelled."""
        ...


class FixedChoice:
    def __init__(self, choice: PropagationChoice | None):
        self.choice = choice

    async def choose(self, mutation: Mutation, source_microcycle_id: int) -> PropagationChoice | None:
        return self.choice


@dataclass
class EditResult:
    outcome: ReplicationOutcome | None = None
    error: DomainError | None = None
    cancelled: bool = False

    @property
    def saved(self) -> bool:
        return self.outcome is not None

    @property
    def message(self) -> str:
        if self.cancelled:
            return "Cancelled"
        if self.error is not None:
            return f"Save failed: {self.error.message}"
        return self.outcome.summary()


class MicrocycleEditor:
    def __init__(self, engine: ReplicationEngine, prompt: PropagationPrompt):
        self._engine = engine
        self._prompt = prompt

    async def submit(self, mutation: Mutation, source_microcycle_id: int) -> EditResult:
        # Deleting a whole microcycle never propagates; no question to ask.
        if isinstance(mutation, DeleteMicrocycle):
            propagate = False
        else:
            choice = await self._prompt.choose(mutation, source_microcycle_id)
            if choice is None:
                return EditResult(cancelled=True)
            propagate = choice is PropagationChoice.THIS_AND_POSTERIOR

        try:
            outcome = await self._engine.apply(mutation, source_microcycle_id, propagate=propagate)
        except DomainError as e:
            logger.warning(
                "edit_not_saved",
                mutation=mutation.kind,
                microcycle_id=source_microcycle_id,
                code=e.code,
            )
            return EditResult(error=e)
        return EditResult(outcome=outcome)
