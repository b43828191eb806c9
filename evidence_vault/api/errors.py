"""
Maps pipeline errors onto HTTP responses.
Every error body is {"error": <category>, "message": <text>}; stack traces never leave the process.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from evidence_vault.core.common.errors import VaultError
from .schemas import ErrorResponse

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    "validation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "payload_too_large": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    "not_found": status.HTTP_404_NOT_FOUND,
    "content_not_found": status.HTTP_404_NOT_FOUND,
    "concurrency_conflict": status.HTTP_409_CONFLICT,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "collaborator_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "terminal_collaborator_error": status.HTTP_502_BAD_GATEWAY,
}

ERROR_BY_STATUS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
}


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, message=message).model_dump())


async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    status_code = STATUS_BY_CATEGORY.get(exc.category, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {status_code} ({exc.category}): {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code} ({exc.category}): {exc}")
    return error_response(status_code, exc.category, str(exc))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error = ERROR_BY_STATUS.get(exc.status_code, "internal" if exc.status_code >= 500 else "bad_request")
    return error_response(exc.status_code, error, str(exc.detail))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", []))
        problems.append(f"{location}: {err.get('msg', 'invalid')}")
    logger.info(f"Rejected {request.method} {request.url.path}: {'; '.join(problems)}")
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, "validation", "; ".join(problems) or "Invalid request.")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}", exc_info=True)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal", "An unexpected error occurred.")


def setup_error_handlers(app: FastAPI):
    app.add_exception_handler(VaultError, vault_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
