"""Shared dependencies for API routes."""
from fastapi import Request

from coachcycle.schemas.base import ResponseMeta
from coachcycle.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def response_meta(request: Request, warnings: list[str] | None = None) -> ResponseMeta:
    return ResponseMeta(
        request_id=getattr(request.state, "request_id", None),
        warnings=warnings or [],
    )
