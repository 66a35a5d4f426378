from datetime import datetime, timezone

from fastapi import Request, status
from fastapi.responses import JSONResponse

from coachcycle.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DomainError,
    NotFoundError,
    TransportError,
    ValidationError,
)


ERROR_STATUS_MAP: dict[type[DomainError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    ConflictError: status.HTTP_409_CONFLICT,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    TransportError: status.HTTP_502_BAD_GATEWAY,
}


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = ERROR_STATUS_MAP.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return JSONResponse(
        status_code=status_code,
        content={
            "data": None,
            "meta": {
                "request_id": getattr(request.state, "request_id", None),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            "errors": [
                {
                    "code": exc.code,
                    "message": exc.message,
                    "details": exc.details,
                }
            ],
        },
    )
