"""
First-set auto-fill.

When the first set of an exercise gets new reps or expected effort, the
later sets of the same exercise follow it, unless the coach already
customized them. Two ways of deciding "customized" are available:

- ``SentinelAutoFill`` treats a set as untouched while its value is empty or
  equal to the template default. Cheap and stateless, but a value that was
  edited and later typed back to the default counts as untouched again.
- ``TouchedAutoFill`` applies the same default check and also remembers
  which (set, field) pairs the coach edited through this process, so a
  default typed back in stays put.
"""
from typing import Any, Iterable, Protocol

from coachcycle.config.settings import Settings, get_settings
from coachcycle.models.program import Exercise, TrainingSet

AUTOFILL_FIELDS = ("reps", "expected_effort")


class AutoFillPolicy(Protocol):
    def should_fill(self, training_set: TrainingSet, field: str) -> bool: ...

    def record_edit(self, training_set: TrainingSet, fields: Iterable[str]) -> None: ...

    def forget(self, set_ids: Iterable[int]) -> None: ...


def _default_values(settings: Settings | None = None) -> dict[str, str]:
    settings = settings or get_settings()
    return {
        "reps": settings.default_reps,
        "expected_effort": settings.default_expected_effort,
    }


class SentinelAutoFill:
    def __init__(self, defaults: dict[str, str] | None = None):
        self.defaults = defaults if defaults is not None else _default_values()

    def should_fill(self, training_set: TrainingSet, field: str) -> bool:
        value = getattr(training_set, field)
        return not value or value == self.defaults.get(field)

    def record_edit(self, training_set: TrainingSet, fields: Iterable[str]) -> None:
        pass

    def forget(self, set_ids: Iterable[int]) -> None:
        pass


class TouchedAutoFill(SentinelAutoFill):
    def __init__(self, defaults: dict[str, str] | None = None):
        super().__init__(defaults)
        self._touched: set[tuple[int, str]] = set()

    def should_fill(self, training_set: TrainingSet, field: str) -> bool:
        if training_set.id is not None and (training_set.id, field) in self._touched:
            return False
        return super().should_fill(training_set, field)

    def record_edit(self, training_set: TrainingSet, fields: Iterable[str]) -> None:
        if training_set.id is None:
            return
        for field in fields:
            if field in AUTOFILL_FIELDS:
                self._touched.add((training_set.id, field))

    def forget(self, set_ids: Iterable[int]) -> None:
        """Drop edit records of sets that no longer exist."""
        gone = set(set_ids)
        self._touched = {pair for pair in self._touched if pair[0] not in gone}

    def is_touched(self, set_id: int, field: str) -> bool:
        return (set_id, field) in self._touched


def build_autofill_policy(settings: Settings | None = None) -> AutoFillPolicy:
    settings = settings or get_settings()
    if settings.autofill_mode == "touched":
        return TouchedAutoFill(_default_values(settings))
    return SentinelAutoFill(_default_values(settings))


def plan_autofill(
    exercise: Exercise,
    first_set: TrainingSet,
    changes: dict[str, Any],
    policy: AutoFillPolicy,
) -> list[tuple[TrainingSet, dict[str, Any]]]:
    """
    Updates to apply to the later sets of ``exercise`` after ``first_set``
    (as it was before the edit) received ``changes``.

    Only fields whose value actually changed are copied.
    """
    copied = {
        field: changes[field]
        for field in AUTOFILL_FIELDS
        if changes.get(field) and changes[field] != getattr(first_set, field)
    }
    if not copied:
        return []

    plan = []
    for training_set in exercise.ordered_sets():
        if training_set.order == first_set.order:
            continue
        fill = {
            field: value
            for field, value in copied.items()
            if getattr(training_set, field) != value and policy.should_fill(training_set, field)
        }
        if fill:
            plan.append((training_set, fill))
    return plan
