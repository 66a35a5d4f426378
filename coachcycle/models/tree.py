"""
Canonical ordering and lookup over the program hierarchy.

Microcycles are sequenced inside a phase by their reported ``position``.
Two microcycles reporting the same position is a data-integrity problem on
the backend side; it is logged and resolved by falling back to the id so the
order stays total and deterministic.
"""
from typing import Iterable

from coachcycle.core.exceptions import NotFoundError
from coachcycle.core.logging import get_logger
from coachcycle.models.program import Day, Exercise, Microcycle, Phase, Program

logger = get_logger(__name__)


def ordered_microcycles(phase: Phase) -> list[Microcycle]:
    """Microcycles of ``phase`` sorted by (position, id)."""
    ordered = sorted(phase.microcycles, key=lambda m: (m.position, m.id))
    for previous, current in zip(ordered, ordered[1:]):
        if previous.position == current.position:
            logger.warning(
                "duplicate_microcycle_position",
                phase_id=phase.id,
                position=current.position,
                microcycle_ids=[previous.id, current.id],
            )
    return ordered


def sequence_position(phase: Phase, microcycle_id: int) -> int:
    """
    Zero-based index of ``microcycle_id`` in the canonical order of ``phase``.

    The index (rather than the raw reported position) is returned so ties
    broken by id still compare strictly.

    Raises:
        NotFoundError: If the microcycle does not belong to the phase
    """
    for index, microcycle in enumerate(ordered_microcycles(phase)):
        if microcycle.id == microcycle_id:
            return index
    raise NotFoundError(
        "microcycle",
        f"Microcycle {microcycle_id} not found in phase {phase.id}",
        {"microcycle_id": microcycle_id, "phase_id": phase.id},
    )


def posterior_microcycles(phase: Phase, microcycle_id: int) -> list[Microcycle]:
    """Microcycles strictly after ``microcycle_id``, in ascending order."""
    position = sequence_position(phase, microcycle_id)
    return ordered_microcycles(phase)[position + 1:]


class ProgramTree:
    """
    Id index over a program's phases and microcycles.

    Built once from a fetched program; lookups never hit the backend.
    """

    def __init__(self, program: Program):
        self.program = program
        self._phases: dict[int, Phase] = {}
        self._microcycles: dict[int, Microcycle] = {}
        self._phase_of: dict[int, int] = {}
        for phase in program.phases:
            self._phases[phase.id] = phase
            for microcycle in phase.microcycles:
                self._microcycles[microcycle.id] = microcycle
                self._phase_of[microcycle.id] = phase.id

    def ordered_phases(self) -> list[Phase]:
        return sorted(self.program.phases, key=lambda p: (p.position, p.id))

    def phase(self, phase_id: int) -> Phase:
        try:
            return self._phases[phase_id]
        except KeyError:
            raise NotFoundError("phase", f"Phase {phase_id} not found", {"phase_id": phase_id})

    def microcycle(self, microcycle_id: int) -> Microcycle:
        try:
            return self._microcycles[microcycle_id]
        except KeyError:
            raise NotFoundError(
                "microcycle",
                f"Microcycle {microcycle_id} not found",
                {"microcycle_id": microcycle_id},
            )

    def phase_of(self, microcycle_id: int) -> Phase:
        self.microcycle(microcycle_id)
        return self._phases[self._phase_of[microcycle_id]]

    def sequence_position(self, microcycle_id: int) -> int:
        return sequence_position(self.phase_of(microcycle_id), microcycle_id)

    def posterior(self, microcycle_id: int) -> list[Microcycle]:
        return posterior_microcycles(self.phase_of(microcycle_id), microcycle_id)

    def iter_microcycles(self) -> Iterable[Microcycle]:
        for phase in self.ordered_phases():
            yield from ordered_microcycles(phase)


def locate_exercise(microcycle: Microcycle, exercise_id: int) -> tuple[Day, Exercise]:
    """
    Find the day and exercise instance for ``exercise_id``.

    Raises:
        NotFoundError: If no day of the microcycle holds the exercise
    """
    found = microcycle.find_exercise(exercise_id)
    if found is None:
        raise NotFoundError(
            "exercise",
            f"Exercise {exercise_id} not found in microcycle {microcycle.id}",
            {"exercise_id": exercise_id, "microcycle_id": microcycle.id},
        )
    return found


def locate_day(microcycle: Microcycle, day_id: int) -> Day:
    day = microcycle.day_by_id(day_id)
    if day is None:
        raise NotFoundError(
            "day",
            f"Day {day_id} not found in microcycle {microcycle.id}",
            {"day_id": day_id, "microcycle_id": microcycle.id},
        )
    return day
