"""HTTP implementation of the backing-service contract."""
from __future__ import annotations
from time import perf_counter
from typing import Any

import httpx
from pydantic.alias_generators import to_camel

from coachcycle.config.settings import get_settings
from coachcycle.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from coachcycle.core.logging import get_logger
from coachcycle.core.metrics import track_backend_request
from coachcycle.models.program import (
    CatalogExercise,
    Exercise,
    Microcycle,
    Phase,
    Program,
    TrainingDay,
    TrainingSet,
)
from coachcycle.repositories.base import CreatedExercise
from coachcycle.schemas.mutations import CatalogExerciseCreate
from coachcycle.schemas.replication import ReplicateForwardResult

logger = get_logger(__name__)


def _camelize(fields: dict[str, Any]) -> dict[str, Any]:
    return {to_camel(key): value for key, value in fields.items()}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, list):
            return "; ".join(str(m) for m in message)
        if message:
            return str(message)
    return response.reason_phrase


class HttpProgramBackend:
    """
    Talks to the training backend REST API.

    The transport timeout is the only timeout in the system; a timeout is
    reported as a ``TransportError`` like any other network failure.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.backend_base_url).rstrip('/')
        self.token = token if token is not None else settings.backend_token
        self.timeout = timeout or settings.backend_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        endpoint: str,
        entity: str,
        json: Any = None,
    ) -> Any:
        client = await self._get_client()
        start = perf_counter()
        try:
            response = await client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            track_backend_request(method, endpoint, "timeout", perf_counter() - start)
            raise TransportError(
                f"{method} {path} timed out",
                code="TR_TIMEOUT",
                details={"path": path},
            ) from e
        except httpx.RequestError as e:
            track_backend_request(method, endpoint, "error", perf_counter() - start)
            raise TransportError(
                f"{method} {path} failed: {e}",
                details={"path": path},
            ) from e

        track_backend_request(method, endpoint, response.status_code, perf_counter() - start)

        status = response.status_code
        if status < 400:
            if status == 204 or not response.content:
                return None
            return response.json()

        message = _error_message(response)
        details = {"path": path, "status": status}
        logger.info("backend_error", method=method, path=path, status=status, message=message)
        if status == 404:
            raise NotFoundError(entity, message, details)
        if status == 409:
            raise ConflictError(message, details=details)
        if status in (401, 403):
            raise AuthorizationError(message, details=details)
        if status in (400, 422):
            raise ValidationError("request", message, details)
        raise TransportError(message, code=f"TR_HTTP_{status}", details=details)

    async def fetch_microcycle(self, microcycle_id: int) -> Microcycle:
        data = await self._request("GET", f"/microcycle/{microcycle_id}", "/microcycle/{id}", "microcycle")
        return Microcycle.model_validate(data)

    async def fetch_phase(self, phase_id: int) -> Phase:
        data = await self._request("GET", f"/mesocycle/{phase_id}", "/mesocycle/{id}", "phase")
        return Phase.model_validate(data)

    async def fetch_program(self, program_id: int) -> Program:
        data = await self._request("GET", f"/macrocycle/{program_id}", "/macrocycle/{id}", "program")
        return Program.model_validate(data)

    async def fetch_catalog(self) -> list[CatalogExercise]:
        data = await self._request("GET", "/exercise-catalog", "/exercise-catalog", "catalog")
        return [CatalogExercise.model_validate(item) for item in data or []]

    async def fetch_muscle_groups(self) -> list[str]:
        data = await self._request(
            "GET", "/exercise-catalog/muscle-groups", "/exercise-catalog/muscle-groups", "catalog"
        )
        return [str(group) for group in data or []]

    async def fetch_dashboard(self, student_id: int) -> dict[str, Any]:
        data = await self._request(
            "GET", f"/student/{student_id}/dashboard", "/student/{id}/dashboard", "student"
        )
        return dict(data or {})

    async def fetch_history(self, student_id: int) -> list[TrainingDay]:
        data = await self._request(
            "GET", f"/student/{student_id}/history", "/student/{id}/history", "student"
        )
        return [TrainingDay.model_validate(item) for item in data or []]

    async def create_catalog_exercise(self, data: CatalogExerciseCreate) -> CatalogExercise:
        body = await self._request(
            "POST",
            "/exercise-catalog",
            "/exercise-catalog",
            "catalog",
            json=data.model_dump(by_alias=True, exclude_none=True),
        )
        return CatalogExercise.model_validate(body)

    async def create_exercise(
        self,
        day_id: int,
        catalog_id: int,
        parameters: dict[str, Any],
        sets: list[dict[str, Any]],
        propagate: bool = False,
    ) -> CreatedExercise:
        body = await self._request(
            "POST",
            f"/day/{day_id}/exercises",
            "/day/{id}/exercises",
            "day",
            json={
                "catalogId": catalog_id,
                **_camelize(parameters),
                "sets": [_camelize(s) for s in sets],
                "replicateToNext": propagate,
            },
        )
        return CreatedExercise(
            exercise=Exercise.model_validate(body["exercise"]),
            replicated_count=body.get("replicatedCount", 0),
        )

    async def update_exercise(self, exercise_id: int, parameters: dict[str, Any]) -> Exercise:
        body = await self._request(
            "PATCH", f"/exercise/{exercise_id}", "/exercise/{id}", "exercise", json=_camelize(parameters)
        )
        return Exercise.model_validate(body)

    async def delete_exercise(self, exercise_id: int) -> None:
        try:
            await self._request("DELETE", f"/exercise/{exercise_id}", "/exercise/{id}", "exercise")
        except NotFoundError:
            logger.debug("exercise_already_deleted", exercise_id=exercise_id)

    async def create_set(self, exercise_id: int, fields: dict[str, Any]) -> TrainingSet:
        body = await self._request(
            "POST", f"/set/{exercise_id}", "/set/{exercise_id}", "exercise", json=_camelize(fields)
        )
        return TrainingSet.model_validate(body)

    async def update_set(self, set_id: int, fields: dict[str, Any]) -> TrainingSet:
        body = await self._request("PATCH", f"/set/{set_id}", "/set/{id}", "set", json=_camelize(fields))
        return TrainingSet.model_validate(body)

    async def delete_set(self, set_id: int) -> None:
        try:
            await self._request("DELETE", f"/set/{set_id}", "/set/{id}", "set")
        except NotFoundError:
            logger.debug("set_already_deleted", set_id=set_id)

    async def delete_microcycle(self, microcycle_id: int) -> None:
        try:
            await self._request("DELETE", f"/microcycle/{microcycle_id}", "/microcycle/{id}", "microcycle")
        except NotFoundError:
            logger.debug("microcycle_already_deleted", microcycle_id=microcycle_id)

    async def replicate_microcycle_forward(self, microcycle_id: int) -> ReplicateForwardResult:
        body = await self._request(
            "POST",
            f"/microcycle/{microcycle_id}/replicate-to-next",
            "/microcycle/{id}/replicate-to-next",
            "microcycle",
        )
        return ReplicateForwardResult.model_validate(body or {})
