import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kbengine.errors import (
    EmbeddingError,
    ExtractionError,
    KnowledgeBaseError,
    StorageError,
    ValidationError,
)

log = logging.getLogger(__name__)

# most specific first
_STATUS_FOR: list[tuple[type[KnowledgeBaseError], int]] = [
    (ValidationError, 400),
    (ExtractionError, 422),
    (EmbeddingError, 502),
    (StorageError, 500),
]


def _base_payload(error: str, message: str, request: Request, detail: Any = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": error,
        "message": message,
        "path": request.url.path,
        "method": request.method,
    }

    if detail is not None:
        payload["detail"] = detail

    return payload


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Raised when Pydantic/FastAPI request body/query/path validation fails.
    """
    log.info("422 validation_error at %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=422,
        content=_base_payload(
            error="validation_error",
            message="The request failed validation.",
            request=request,
            detail=exc.errors(),
        ),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Handles explicit HTTPException (404, 400, etc.) raised by routes or dependencies.
    """
    if exc.status_code >= 500:
        log.error("HTTP %s at %s %s: %s", exc.status_code, request.method, request.url.path, exc.detail)
    else:
        log.warning(
            "HTTP %s at %s %s: %s", exc.status_code, request.method, request.url.path, exc.detail
        )

    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    detail = None if isinstance(exc.detail, str) else exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content=_base_payload(error="http_error", message=str(message), request=request, detail=detail),
    )


async def knowledge_base_exception_handler(request: Request, exc: KnowledgeBaseError):
    """
    Maps engine errors to status codes; the ``error`` field carries the error's code.
    """
    status = next((s for cls, s in _STATUS_FOR if isinstance(exc, cls)), 500)
    if status >= 500:
        log.error("%s at %s %s: %s", exc.code, request.method, request.url.path, exc)
    else:
        log.warning("%s at %s %s: %s", exc.code, request.method, request.url.path, exc)

    detail = None
    if isinstance(exc, EmbeddingError) and exc.status_code is not None:
        detail = {"upstream_status": exc.status_code}

    return JSONResponse(
        status_code=status,
        content=_base_payload(error=exc.code, message=str(exc), request=request, detail=detail),
    )


async def value_error_handler(request: Request, exc: ValueError):
    """Precondition violations from pure components (bad chunk sizes, vector dims)."""
    log.warning("invalid_input at %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=400,
        content=_base_payload(error="invalid_input", message=str(exc), request=request),
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """
    Last-resort handler for any unhandled exceptions. Returns a 500 without leaking internals.
    """
    log.exception("Unhandled error at %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_base_payload(
            error="internal_server_error",
            message="An unexpected error occurred.",
            request=request,
        ),
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(KnowledgeBaseError, knowledge_base_exception_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
