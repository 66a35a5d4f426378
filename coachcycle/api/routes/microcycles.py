"""API routes for microcycle reads and edits."""
from fastapi import APIRouter, Depends, Request, status

from coachcycle.api.routes.dependencies import get_container, response_meta
from coachcycle.models.program import Microcycle, Phase, Program
from coachcycle.schemas.base import APIResponse
from coachcycle.schemas.mutations import DeleteMicrocycle, MutationRequest
from coachcycle.schemas.replication import ReplicateForwardResult, ReplicationOutcome
from coachcycle.services.container import ServiceContainer

router = APIRouter()


@router.get("/microcycles/{microcycle_id}", response_model=APIResponse[Microcycle])
async def get_microcycle(
    microcycle_id: int,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    microcycle = await container.queries.get_microcycle(microcycle_id)
    return APIResponse[Microcycle](data=microcycle, meta=response_meta(request))


@router.get("/phases/{phase_id}", response_model=APIResponse[Phase])
async def get_phase(
    phase_id: int,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    phase = await container.queries.get_phase(phase_id)
    return APIResponse[Phase](data=phase, meta=response_meta(request))


@router.get("/programs/{program_id}", response_model=APIResponse[Program])
async def get_program(
    program_id: int,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    program = await container.queries.get_program(program_id)
    return APIResponse[Program](data=program, meta=response_meta(request))


@router.post("/microcycles/{microcycle_id}/mutations", response_model=APIResponse[ReplicationOutcome])
async def apply_mutation(
    microcycle_id: int,
    body: MutationRequest,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    """
    Apply one edit to the microcycle; with ``propagate`` also to every
    later microcycle of its phase. Replica failures come back as warnings
    next to a successful response; a failed primary write is an error.
    """
    outcome = await container.engine.apply(body.mutation, microcycle_id, propagate=body.propagate)
    warnings = [outcome.summary()] if outcome.is_partial else []
    return APIResponse[ReplicationOutcome](data=outcome, meta=response_meta(request, warnings))


@router.post(
    "/microcycles/{microcycle_id}/replicate-forward",
    response_model=APIResponse[ReplicateForwardResult],
)
async def replicate_forward(
    microcycle_id: int,
    request: Request,
    container: ServiceContainer = Depends(get_container),
):
    result = await container.engine.replicate_forward(microcycle_id)
    return APIResponse[ReplicateForwardResult](data=result, meta=response_meta(request))


@router.delete("/microcycles/{microcycle_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_microcycle(
    microcycle_id: int,
    container: ServiceContainer = Depends(get_container),
):
    await container.engine.apply(DeleteMicrocycle(microcycle_id=microcycle_id), microcycle_id)
