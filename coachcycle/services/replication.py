"""
ReplicationEngine - forward propagation of microcycle edits.

Responsible for:
- Validating a mutation before any network call
- Applying it to the source microcycle (the primary write)
- Replaying an equivalent mutation on every posterior microcycle of the same
  phase, matching days by ``day_number`` and exercises by ``catalog_id``
- Invalidating the cache entries the writes touched and publishing a
  ``MutationApplied`` event

Replica failures never undo or fail the primary write; they are collected
on the outcome. Failed replicas are not retried automatically: re-running
the same mutation finds the already-updated rows through the same alignment
keys. A re-run ``DeleteExercise`` carries the outcome's ``day_number`` and
``catalog_id``, since its source row is already gone.
"""
import asyncio
from dataclasses import dataclass
from typing import Any

from coachcycle.config.settings import Settings, get_settings
from coachcycle.core.cache import CacheKey
from coachcycle.core.events import MutationApplied
from coachcycle.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DomainError,
    NotFoundError,
    ValidationError,
)
from coachcycle.core.logging import get_logger
from coachcycle.core.metrics import track_replica_write
from coachcycle.models.program import Day, Exercise, Microcycle, Phase, TrainingSet
from coachcycle.models.tree import locate_day, locate_exercise, posterior_microcycles, sequence_position
from coachcycle.repositories.base import ProgramBackend
from coachcycle.schemas.mutations import (
    DELETION_KINDS,
    AddExercise,
    AddSet,
    DeleteExercise,
    DeleteMicrocycle,
    Mutation,
    RemoveSet,
    UpdateExerciseParameters,
    UpdateSet,
)
from coachcycle.schemas.replication import (
    ReplicaFailure,
    ReplicaSkip,
    ReplicateForwardResult,
    ReplicationOutcome,
)
from coachcycle.services.autofill import AutoFillPolicy, build_autofill_policy, plan_autofill
from coachcycle.services.cache_layer import CacheLayer, microcycle_key, phase_key, program_key
from coachcycle.services.queries import ProgramQueryService

logger = get_logger(__name__)


class _Skip(Exception):
    """Candidate has nothing to replicate into."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@dataclass(frozen=True)
class _Alignment:
    """Alignment keys of the edited exercise (or target day) in the source."""
    day_number: int
    catalog_id: int


@dataclass
class _CandidateResult:
    microcycle_id: int
    status: str  # "replicated" | "skipped" | "failed"
    reason: str | None = None
    code: str | None = None
    fatal: bool = False


def _dump(model: Any) -> dict[str, Any] | None:
    if model is None:
        return None
    return model.model_dump(by_alias=True)


class ReplicationEngine:
    """
    Applies one user-authored mutation and, on request, its equivalents on
    later microcycles of the same phase.

    Microcycles before the edited one are never read for writing nor
    written. The primary write is awaited before any replica write is
    issued; replicas for distinct candidates run concurrently (bounded by
    ``replica_concurrency``), while the writes for one candidate are issued
    in order. Deletions walk the candidates one at a time so an
    authorization failure can stop the remaining deletes.
    """

    def __init__(
        self,
        backend: ProgramBackend,
        cache: CacheLayer,
        queries: ProgramQueryService | None = None,
        autofill: AutoFillPolicy | None = None,
        settings: Settings | None = None,
    ):
        self._backend = backend
        self._cache = cache
        self._queries = queries or ProgramQueryService(backend, cache)
        self._settings = settings or get_settings()
        self._autofill = autofill or build_autofill_policy(self._settings)
        self._concurrency = max(1, self._settings.replica_concurrency)

    @property
    def autofill(self) -> AutoFillPolicy:
        return self._autofill

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def apply(
        self,
        mutation: Mutation,
        source_microcycle_id: int,
        propagate: bool = False,
    ) -> ReplicationOutcome:
        """
        Apply ``mutation`` to the source microcycle and optionally forward.

        Args:
            mutation: One of the mutation request models
            source_microcycle_id: Microcycle the coach is editing
            propagate: Also apply to every posterior microcycle

        Returns:
            ReplicationOutcome with the primary result and replica counts

        Raises:
            ValidationError: Malformed mutation, before any network call
            NotFoundError: Source day/exercise/set does not exist
            TransportError: Primary write (or source resolution) failed
            AuthorizationError: Primary write was rejected
        """
        self._validate(mutation)
        log = logger.bind(
            mutation=mutation.kind,
            microcycle_id=source_microcycle_id,
            propagate=propagate,
        )

        if isinstance(mutation, DeleteMicrocycle):
            if propagate:
                log.info("propagation_ignored_for_microcycle_delete")
            return await self._delete_microcycle(mutation)

        source = await self._load_source(mutation, source_microcycle_id)
        already_applied = self._primary_already_applied(mutation, source)
        alignment = self._alignment(mutation, source)

        phase: Phase | None = None
        candidates: list[Microcycle] = []
        if propagate:
            phase = await self._load_phase(source)
            candidates = posterior_microcycles(phase, source.id)
            log.info(
                "propagation_planned",
                phase_id=phase.id,
                position=sequence_position(phase, source.id),
                candidates=[c.id for c in candidates],
            )

        affected: list[CacheKey] = [microcycle_key(source.id)]
        owner = await self._program_key(source, phase)
        if owner is not None:
            affected.append(owner)
        try:
            if already_applied:
                log.info("primary_already_applied", exercise_id=mutation.exercise_id)
                primary = None
            else:
                primary = await self._apply_primary(mutation, source)
        except DomainError as e:
            log.error("primary_write_failed", code=e.code, error=e.message)
            raise
        finally:
            await self._cache.invalidate(*affected)

        outcome = ReplicationOutcome(
            mutation=mutation.kind,
            source_microcycle_id=source.id,
            day_number=alignment.day_number,
            catalog_id=alignment.catalog_id,
            propagated=propagate,
            primary=primary,
            candidate_count=len(candidates),
        )

        if candidates:
            results = await self._fan_out(mutation, alignment, candidates)
            self._collect(outcome, results)
            touched = [r.microcycle_id for r in results if r.status != "skipped"]
            await self._cache.invalidate(*(microcycle_key(mid) for mid in touched))
            affected.extend(microcycle_key(mid) for mid in touched)

        log.info(
            "mutation_applied",
            replicated=outcome.replicated_count,
            failed=len(outcome.failures),
            skipped=len(outcome.skipped),
        )
        await self._cache.publish(
            MutationApplied(
                kind=mutation.kind,
                affected_keys=tuple(affected),
                student_id=source.student_id,
            )
        )
        return outcome

    async def replicate_forward(self, microcycle_id: int) -> ReplicateForwardResult:
        """
        Ask the backend to copy the whole microcycle onto its posterior
        microcycles, then drop every cached copy it may have rewritten.
        """
        source = await self._queries.get_microcycle(microcycle_id)
        phase = await self._load_phase(source)
        posterior = posterior_microcycles(phase, source.id)

        result = await self._backend.replicate_microcycle_forward(microcycle_id)

        keys = [microcycle_key(source.id), *(microcycle_key(m.id) for m in posterior)]
        owner = await self._program_key(source, phase)
        if owner is not None:
            keys.append(owner)
        await self._cache.invalidate(*keys)
        logger.info(
            "microcycle_replicated_forward",
            microcycle_id=microcycle_id,
            replicated_to=result.replicated_to,
        )
        await self._cache.publish(
            MutationApplied(
                kind="replicate_forward",
                affected_keys=tuple(keys),
                student_id=source.student_id,
            )
        )
        return result

    # ------------------------------------------------------------------
    # Validation and source resolution
    # ------------------------------------------------------------------

    def _validate(self, mutation: Mutation) -> None:
        if isinstance(mutation, AddExercise):
            if mutation.catalog_id is None:
                raise ValidationError("catalog_id", "an exercise must reference a catalog exercise")
            if mutation.day_id is None:
                raise ValidationError("day_id", "an exercise must be added to a day")
        elif isinstance(mutation, UpdateExerciseParameters):
            if not mutation.parameters.changes():
                raise ValidationError("parameters", "no parameters to update")
        elif isinstance(mutation, UpdateSet):
            if mutation.set_order < 0:
                raise ValidationError("set_order", "must be zero or greater")
            if not mutation.fields.changes():
                raise ValidationError("fields", "no set fields to update")
        elif isinstance(mutation, AddSet):
            if mutation.after_order is not None and mutation.after_order < -1:
                raise ValidationError("after_order", "must be -1 or greater")
        elif isinstance(mutation, RemoveSet):
            if mutation.set_order < 0:
                raise ValidationError("set_order", "must be zero or greater")
        elif isinstance(mutation, DeleteExercise):
            if (mutation.day_number is None) != (mutation.catalog_id is None):
                raise ValidationError("alignment", "day_number and catalog_id must be given together")

    async def _load_source(self, mutation: Mutation, microcycle_id: int) -> Microcycle:
        """
        Cached copy of the source microcycle, refreshed once if it does not
        know the row the mutation refers to.
        """
        source = await self._queries.get_microcycle(microcycle_id)
        if self._refers_to_known_row(mutation, source):
            return source
        logger.info("source_refetch", microcycle_id=microcycle_id, mutation=mutation.kind)
        return await self._queries.refresh_microcycle(microcycle_id)

    @staticmethod
    def _refers_to_known_row(mutation: Mutation, source: Microcycle) -> bool:
        if isinstance(mutation, AddExercise):
            return source.day_by_id(mutation.day_id) is not None
        return source.find_exercise(mutation.exercise_id) is not None

    @staticmethod
    def _primary_already_applied(mutation: Mutation, source: Microcycle) -> bool:
        """A delete re-run whose source exercise is already gone."""
        return (
            isinstance(mutation, DeleteExercise)
            and mutation.day_number is not None
            and source.find_exercise(mutation.exercise_id) is None
        )

    def _alignment(self, mutation: Mutation, source: Microcycle) -> _Alignment:
        if isinstance(mutation, AddExercise):
            day = locate_day(source, mutation.day_id)
            return _Alignment(day.day_number, mutation.catalog_id)
        if self._primary_already_applied(mutation, source):
            return _Alignment(mutation.day_number, mutation.catalog_id)
        day, exercise = locate_exercise(source, mutation.exercise_id)
        return _Alignment(day.day_number, exercise.catalog_id)

    async def _program_key(self, source: Microcycle, phase: Phase | None = None) -> CacheKey | None:
        """Cache key of the program embedding ``source``, if its phase layout is known locally."""
        if phase is None and source.phase_id is not None:
            phase = await self._cache.phases.get(source.phase_id)
        if phase is None or phase.program_id is None:
            return None
        return program_key(phase.program_id)

    async def _load_phase(self, source: Microcycle) -> Phase:
        """Authoritative phase layout; posterior detection must not use a stale copy."""
        if source.phase_id is None:
            raise ConflictError(
                f"Microcycle {source.id} is not attached to a phase",
                details={"microcycle_id": source.id},
            )
        return await self._queries.refresh_phase(source.phase_id)

    # ------------------------------------------------------------------
    # Primary write
    # ------------------------------------------------------------------

    async def _apply_primary(self, mutation: Mutation, source: Microcycle) -> dict[str, Any] | None:
        if isinstance(mutation, AddExercise):
            day = locate_day(source, mutation.day_id)
            created = await self._create_exercise(day, mutation)
            return _dump(created)

        _, exercise = locate_exercise(source, mutation.exercise_id)

        if isinstance(mutation, UpdateExerciseParameters):
            return _dump(await self._backend.update_exercise(exercise.id, mutation.parameters.changes()))

        if isinstance(mutation, UpdateSet):
            training_set = self._require_set(exercise, mutation.set_order)
            changes = mutation.fields.changes()
            updated = await self._backend.update_set(training_set.id, changes)
            self._autofill.record_edit(training_set, changes.keys())
            if mutation.set_order == 0:
                await self._autofill_later_sets(exercise, training_set, changes)
            return _dump(updated)

        if isinstance(mutation, AddSet):
            return _dump(await self._insert_set(exercise, mutation))

        if isinstance(mutation, RemoveSet):
            self._require_set(exercise, mutation.set_order)
            return {"sets": [_dump(s) for s in await self._remove_set(exercise, mutation.set_order)]}

        if isinstance(mutation, DeleteExercise):
            await self._delete_exercise(exercise)
            return None

        raise ValidationError("kind", f"unsupported mutation {mutation.kind}")

    async def _autofill_later_sets(
        self,
        exercise: Exercise,
        first_set: TrainingSet,
        changes: dict[str, Any],
    ) -> None:
        for training_set, fill in plan_autofill(exercise, first_set, changes, self._autofill):
            if training_set.id is None:
                continue
            await self._backend.update_set(training_set.id, fill)
            logger.debug(
                "set_autofilled",
                exercise_id=exercise.id,
                set_order=training_set.order,
                fields=sorted(fill),
            )

    @staticmethod
    def _require_set(exercise: Exercise, order: int) -> TrainingSet:
        training_set = exercise.set_at(order)
        if training_set is None:
            raise NotFoundError(
                "set",
                f"Exercise {exercise.id} has no set at order {order}",
                {"exercise_id": exercise.id, "set_order": order},
            )
        if training_set.id is None:
            raise ValidationError("set", "set has not been saved yet", {"set_order": order})
        return training_set

    # ------------------------------------------------------------------
    # Shared write helpers (primary and replicas)
    # ------------------------------------------------------------------

    def _exercise_parameters(self, mutation: AddExercise, order: int) -> dict[str, Any]:
        parameters = {
            "series": self._settings.default_series,
            "reps": self._settings.default_reps,
            "rest": self._settings.default_rest,
            "expected_effort": self._settings.default_expected_effort,
        }
        parameters.update(mutation.parameters.changes())
        parameters["order"] = order
        return parameters

    def _initial_sets(self, mutation: AddExercise, parameters: dict[str, Any]) -> list[dict[str, Any]]:
        if mutation.initial_sets:
            sets = []
            for index, fields in enumerate(mutation.initial_sets):
                seeded = {
                    "reps": parameters["reps"],
                    "expected_effort": parameters["expected_effort"],
                    "is_amrap": False,
                }
                seeded.update(fields.changes())
                seeded["order"] = index
                sets.append(seeded)
            return sets
        try:
            count = int(parameters["series"])
        except (TypeError, ValueError):
            count = int(self._settings.default_series)
        return [
            {
                "order": index,
                "reps": parameters["reps"],
                "expected_effort": parameters["expected_effort"],
                "is_amrap": False,
            }
            for index in range(max(count, 0))
        ]

    async def _create_exercise(self, day: Day, mutation: AddExercise) -> Exercise:
        parameters = self._exercise_parameters(mutation, day.next_exercise_order())
        sets = self._initial_sets(mutation, parameters)
        created = await self._backend.create_exercise(
            day.id, mutation.catalog_id, parameters, sets, propagate=False
        )
        return created.exercise

    def _seed_fields(self, exercise: Exercise, seed_from_first_set: bool) -> dict[str, Any]:
        sets = exercise.ordered_sets()
        first = sets[0] if sets and seed_from_first_set else None
        return {
            "reps": (first.reps if first else None) or self._settings.default_reps,
            "expected_effort": (first.expected_effort if first else None)
            or self._settings.default_expected_effort,
            "is_amrap": False,
        }

    async def _insert_set(self, exercise: Exercise, mutation: AddSet) -> TrainingSet:
        """
        Insert a set after ``mutation.after_order`` (clamped to the end) and
        shift the following sets so orders stay contiguous.

        If the insert fails after sets were shifted, the shifted sets are
        moved back before the error propagates.
        """
        sets = exercise.ordered_sets()
        if mutation.after_order is None:
            insert_at = len(sets)
        else:
            insert_at = min(mutation.after_order + 1, len(sets))

        shifted: list[tuple[TrainingSet, int]] = []
        try:
            # Shift from the tail so two sets never share an order
            for index in range(len(sets) - 1, insert_at - 1, -1):
                training_set = sets[index]
                if training_set.order != index + 1 and training_set.id is not None:
                    await self._backend.update_set(training_set.id, {"order": index + 1})
                    shifted.append((training_set, index))

            fields = self._seed_fields(exercise, mutation.seed_from_first_set)
            fields["order"] = insert_at
            return await self._backend.create_set(exercise.id, fields)
        except DomainError:
            await self._unshift(exercise, shifted)
            raise

    async def _unshift(self, exercise: Exercise, shifted: list[tuple[TrainingSet, int]]) -> None:
        if not shifted:
            return
        try:
            # Head first: each set moves back into the slot its neighbour vacated
            for training_set, order in reversed(shifted):
                await self._backend.update_set(training_set.id, {"order": order})
        except DomainError as e:
            logger.error(
                "set_orders_half_applied",
                exercise_id=exercise.id,
                code=e.code,
                error=e.message,
            )
            return
        logger.warning("set_insert_rolled_back", exercise_id=exercise.id, restored=len(shifted))

    async def _remove_set(self, exercise: Exercise, order: int) -> list[TrainingSet]:
        """
        Delete the set at ``order`` and compact the remaining orders to 0..n-2.

        A failed compaction is retried once; if it fails again the orders are
        left with a gap and the error propagates.
        """
        removed = exercise.set_at(order)
        await self._backend.delete_set(removed.id)
        self._autofill.forget([removed.id])

        remaining = [s for s in exercise.ordered_sets() if s is not removed]
        try:
            return await self._compact(remaining)
        except DomainError as e:
            logger.warning("set_compaction_retried", exercise_id=exercise.id, code=e.code, error=e.message)
        try:
            return await self._compact(remaining)
        except DomainError as e:
            logger.error(
                "set_orders_half_applied",
                exercise_id=exercise.id,
                removed_set_id=removed.id,
                code=e.code,
                error=e.message,
            )
            raise

    async def _compact(self, sets: list[TrainingSet]) -> list[TrainingSet]:
        compacted = []
        for index, training_set in enumerate(sets):
            if training_set.order != index and training_set.id is not None:
                training_set = await self._backend.update_set(training_set.id, {"order": index})
            compacted.append(training_set.model_copy(update={"order": index}))
        return compacted

    async def _delete_exercise(self, exercise: Exercise) -> None:
        await self._backend.delete_exercise(exercise.id)
        self._autofill.forget(s.id for s in exercise.sets if s.id is not None)

    # ------------------------------------------------------------------
    # Replica fan-out
    # ------------------------------------------------------------------

    async def _fan_out(
        self,
        mutation: Mutation,
        alignment: _Alignment,
        candidates: list[Microcycle],
    ) -> list[_CandidateResult]:
        if mutation.kind in DELETION_KINDS:
            results: list[_CandidateResult] = []
            for index, candidate in enumerate(candidates):
                result = await self._run_candidate(mutation, alignment, candidate.id)
                results.append(result)
                if result.fatal:
                    logger.error(
                        "propagated_delete_stopped",
                        mutation=mutation.kind,
                        microcycle_id=candidate.id,
                        remaining=[c.id for c in candidates[index + 1:]],
                    )
                    results.extend(
                        _CandidateResult(c.id, "skipped", reason="stopped after authorization failure")
                        for c in candidates[index + 1:]
                    )
                    break
            return results

        semaphore = asyncio.Semaphore(self._concurrency)

        async def bounded(candidate: Microcycle) -> _CandidateResult:
            async with semaphore:
                return await self._run_candidate(mutation, alignment, candidate.id)

        return list(await asyncio.gather(*(bounded(c) for c in candidates)))

    async def _run_candidate(
        self,
        mutation: Mutation,
        alignment: _Alignment,
        microcycle_id: int,
    ) -> _CandidateResult:
        log = logger.bind(mutation=mutation.kind, candidate_id=microcycle_id)
        try:
            await self._replicate_to(mutation, alignment, microcycle_id)
        except _Skip as skip:
            log.debug("replica_skipped", reason=skip.reason)
            track_replica_write(mutation.kind, "skipped")
            return _CandidateResult(microcycle_id, "skipped", reason=skip.reason)
        except NotFoundError as e:
            log.debug("replica_target_missing", error=e.message)
            track_replica_write(mutation.kind, "skipped")
            return _CandidateResult(microcycle_id, "skipped", reason=e.message, code=e.code)
        except ConflictError as e:
            log.warning("replica_conflict", error=e.message)
            track_replica_write(mutation.kind, "skipped")
            return _CandidateResult(microcycle_id, "skipped", reason=e.message, code=e.code)
        except DomainError as e:
            log.error("replica_failed", code=e.code, error=e.message)
            track_replica_write(mutation.kind, "failed")
            return _CandidateResult(
                microcycle_id,
                "failed",
                reason=e.message,
                code=e.code,
                fatal=isinstance(e, AuthorizationError),
            )
        except Exception as e:
            log.exception("replica_failed_unexpectedly")
            track_replica_write(mutation.kind, "failed")
            return _CandidateResult(microcycle_id, "failed", reason=str(e) or type(e).__name__)
        track_replica_write(mutation.kind, "replicated")
        return _CandidateResult(microcycle_id, "replicated")

    async def _replicate_to(self, mutation: Mutation, alignment: _Alignment, microcycle_id: int) -> None:
        # Always read candidates fresh: they are matched by content, and a
        # cached copy may predate server-side changes.
        candidate = await self._backend.fetch_microcycle(microcycle_id)

        day = candidate.day_by_number(alignment.day_number)
        if day is None:
            raise _Skip(f"no day {alignment.day_number}")

        exercise = day.exercise_by_catalog(alignment.catalog_id)

        if isinstance(mutation, AddExercise):
            if exercise is None:
                await self._create_exercise(day, mutation)
            else:
                parameters = mutation.parameters.changes()
                if parameters:
                    await self._backend.update_exercise(exercise.id, parameters)
            return

        if exercise is None:
            raise _Skip(f"no exercise with catalog id {alignment.catalog_id} on day {alignment.day_number}")

        if isinstance(mutation, UpdateExerciseParameters):
            await self._backend.update_exercise(exercise.id, mutation.parameters.changes())
        elif isinstance(mutation, UpdateSet):
            training_set = exercise.set_at(mutation.set_order)
            if training_set is None or training_set.id is None:
                raise _Skip(f"no set at order {mutation.set_order}")
            await self._backend.update_set(training_set.id, mutation.fields.changes())
        elif isinstance(mutation, AddSet):
            await self._insert_set(exercise, mutation)
        elif isinstance(mutation, RemoveSet):
            training_set = exercise.set_at(mutation.set_order)
            if training_set is None or training_set.id is None:
                raise _Skip(f"no set at order {mutation.set_order}")
            await self._remove_set(exercise, mutation.set_order)
        elif isinstance(mutation, DeleteExercise):
            await self._delete_exercise(exercise)

    @staticmethod
    def _collect(outcome: ReplicationOutcome, results: list[_CandidateResult]) -> None:
        for result in results:
            if result.status == "replicated":
                outcome.replicated_count += 1
                outcome.replicated_microcycle_ids.append(result.microcycle_id)
            elif result.status == "failed":
                outcome.failures.append(
                    ReplicaFailure(
                        microcycle_id=result.microcycle_id,
                        reason=result.reason or "unknown error",
                        code=result.code,
                    )
                )
                if result.fatal:
                    outcome.aborted = True
            else:
                outcome.skipped.append(
                    ReplicaSkip(microcycle_id=result.microcycle_id, reason=result.reason or "")
                )

    # ------------------------------------------------------------------
    # Single-target operations
    # ------------------------------------------------------------------

    async def _delete_microcycle(self, mutation: DeleteMicrocycle) -> ReplicationOutcome:
        keys = [microcycle_key(mutation.microcycle_id)]
        student_id = None
        try:
            microcycle = await self._queries.get_microcycle(mutation.microcycle_id)
        except NotFoundError:
            microcycle = None
        if microcycle is not None:
            student_id = microcycle.student_id
            if microcycle.phase_id is not None:
                owner = await self._program_key(microcycle)
                keys.append(phase_key(microcycle.phase_id))
                if owner is not None:
                    keys.append(owner)

        try:
            await self._backend.delete_microcycle(mutation.microcycle_id)
        finally:
            await self._cache.invalidate(*keys)
        if microcycle is not None:
            self._autofill.forget(
                s.id for day in microcycle.days for e in day.exercises for s in e.sets if s.id is not None
            )

        logger.info("microcycle_deleted", microcycle_id=mutation.microcycle_id)
        await self._cache.publish(
            MutationApplied(kind=mutation.kind, affected_keys=tuple(keys), student_id=student_id)
        )
        return ReplicationOutcome(
            mutation=mutation.kind,
            source_microcycle_id=mutation.microcycle_id,
            propagated=False,
        )
