"""Exception handlers mapping consent engine errors to HTTP responses.

Mapping:
- ValidationError (and malformed request bodies) -> 400
- NotFoundError                                  -> 404
- StateConflictError / OptimisticConcurrencyError -> 409
- any other ConsentEngineError                   -> 500

Unexpected exceptions are left to the server's default 500 handling.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from consent_engine.errors import (
    ConflictError,
    ConsentEngineError,
    NotFoundError,
    ValidationError,
)
from consent_engine.observability import get_logger

logger = get_logger(__name__)


def status_code_for(error: ConsentEngineError) -> int:
    """Return the HTTP status code for a consent engine error."""
    if isinstance(error, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, ConflictError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def consent_engine_error_handler(request: Request, exc: ConsentEngineError) -> JSONResponse:
    """Render a ConsentEngineError as JSON with its mapped status code."""
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed",
        method=request.method,
        path=request.url.path,
        code=exc.code,
        status_code=status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render a malformed request as a 400 validation error."""
    logger.warning("Invalid request", method=request.method, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Request validation failed.",
            "code": ValidationError.code,
            "details": {"errors": jsonable_errors(exc)},
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    """Reduce pydantic error entries to their JSON-safe fields."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """Install the consent engine exception handlers on ``app``."""
    app.add_exception_handler(ConsentEngineError, consent_engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
