"""Result shapes returned by the replication engine."""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ReplicaFailure(BaseModel):
    microcycle_id: int
    reason: str
    code: str | None = None


class ReplicaSkip(BaseModel):
    microcycle_id: int
    reason: str


class ReplicationOutcome(BaseModel):
    """
    Result of one ``ReplicationEngine.apply`` call.

    The primary write always succeeded when an outcome exists; a failed
    primary raises instead. ``candidate_count`` counts every posterior
    microcycle considered, ``attempted_count`` only those that held a match.
    ``day_number`` and ``catalog_id`` are the alignment keys the replicas
    were matched by.
    """
    mutation: str
    source_microcycle_id: int
    day_number: int | None = None
    catalog_id: int | None = None
    propagated: bool = False
    primary: dict[str, Any] | None = None
    candidate_count: int = 0
    replicated_count: int = 0
    replicated_microcycle_ids: list[int] = Field(default_factory=list)
    skipped: list[ReplicaSkip] = Field(default_factory=list)
    failures: list[ReplicaFailure] = Field(default_factory=list)
    aborted: bool = False

    @property
    def attempted_count(self) -> int:
        return self.replicated_count + len(self.failures)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)

    def summary(self) -> str:
        if not self.propagated:
            return "Saved"
        if not self.failures:
            return (
                f"Saved and replicated to {self.replicated_count} "
                f"of {self.attempted_count} microcycles"
            )
        failed_ids = ", ".join(str(f.microcycle_id) for f in self.failures)
        return (
            f"Saved, replicated to {self.replicated_count} of {self.attempted_count} "
            f"microcycles; failed: [{failed_ids}]"
        )


class ReplicateForwardResult(BaseModel):
    replicated_to: int = Field(0, alias="replicatedTo")
    message: str | None = None

    model_config = ConfigDict(populate_by_name=True)
