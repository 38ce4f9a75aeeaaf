"""Middleware and exception handlers for the FastAPI application."""

import time
import traceback
import uuid
from typing import Union

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from clubhouse.core.config import settings
from clubhouse.core.exceptions import ClubhouseException, ErrorKind, unpack_validation_error
from clubhouse.core.logging import logger

ERROR_KIND_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.CONFIGURATION: 503,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.VALIDATION: 400,
    ErrorKind.PROVIDER: 502,
    ErrorKind.PERSISTENCE: 500,
}


async def add_request_id(request: Request, call_next: callable) -> Response:
    """Middleware to generate and add a request ID to the request for tracing.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    request.state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response


async def log_requests(request: Request, call_next: callable) -> Response:
    """Middleware to log incoming requests."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time
    logger.info(
        f"Handled request {request.method} {request.url.path} in {duration:.2f} seconds. "
        f"Response code: {response.status_code}"
    )
    return response


async def exception_logging_middleware(request: Request, call_next: callable) -> Response:
    """Middleware to log unhandled exceptions.

    The response never carries the exception text; the stack trace is only
    included in debug mode.
    """
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")

        response_content = {"error": ErrorKind.PERSISTENCE.value, "detail": "Internal Server Error"}
        if settings.DEBUG:
            response_content["trace"] = traceback.format_exc()

        return JSONResponse(status_code=500, content=response_content)


# Exception handlers
async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """Exception handler for request and model validation errors.

    Returns:
    -------
        JSONResponse: A 422 response listing each invalid field, e.g.
            ``{"errors": [{"body.method": "Input should be 'cash', 'wire' or 'other'"}]}``

    """
    error_messages = unpack_validation_error(exc)
    logger.warning(f"Validation error on {request.method} {request.url.path}: {error_messages}")
    return JSONResponse(status_code=422, content=error_messages)


async def clubhouse_exception_handler(request: Request, exc: ClubhouseException) -> JSONResponse:
    """Map a ``ClubhouseException`` to a status code by its error kind.

    The body is ``{"error": <kind>, "detail": <message>}``. Structured context
    (including any provider message) is logged, never returned.
    """
    status_code = ERROR_KIND_STATUS_CODES.get(exc.kind, 500)
    log = logger.with_context(
        request_id=getattr(request.state, "request_id", ""),
        error_kind=exc.kind.value,
    )
    if status_code >= 500:
        log.error(f"{exc.__class__.__name__}: {exc.message} {exc.context}")
    else:
        log.info(f"{exc.__class__.__name__}: {exc.message} {exc.context}")

    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind.value, "detail": exc.message},
    )
