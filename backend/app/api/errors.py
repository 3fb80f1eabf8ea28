"""Map domain exceptions to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.core.logging import get_logger
from app.pipeline.errors import (
    ConfigurationError,
    EntityNotFoundError,
    PipelineError,
    PipelineExistsError,
    PipelineInUseError,
    SchedulerClosedError,
    StateTransitionError,
    ValidationError,
)

logger = get_logger(__name__)

# Most specific first; the first isinstance match wins.
STATUS_BY_ERROR: list[tuple[type[PipelineError], int]] = [
    (PipelineExistsError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (EntityNotFoundError, status.HTTP_404_NOT_FOUND),
    (StateTransitionError, status.HTTP_409_CONFLICT),
    (PipelineInUseError, status.HTTP_409_CONFLICT),
    (SchedulerClosedError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: PipelineError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(exc: PipelineError) -> dict:
    if isinstance(exc, ValidationError):
        return exc.to_dict()
    body = {"message": str(exc), "error": type(exc).__name__}
    if exc.details:
        body["details"] = exc.details
    return body


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    code = status_for(exc)
    log = logger.bind(path=request.url.path, error=type(exc).__name__)
    if code >= 500:
        log.error("Request failed", message=str(exc))
    else:
        log.info("Request rejected", status=code, message=str(exc))
    return JSONResponse(status_code=code, content=error_body(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PipelineError, pipeline_error_handler)
