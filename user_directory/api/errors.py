"""Exception handlers rendering the error taxonomy as JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..domain.errors import DirectoryError, ResponseMapper, ValidationFailedError

logger = logging.getLogger(__name__)

mapper = ResponseMapper()


def _respond(request: Request, exc: BaseException) -> JSONResponse:
    status_code, payload, descriptor = mapper.render(exc)
    headers = {}
    if descriptor.retry_after is not None:
        headers["Retry-After"] = str(descriptor.retry_after)
    if status_code >= 500:
        logger.error(
            "request failed",
            extra={"path": request.url.path, "method": request.method, "code": descriptor.code},
        )
    return JSONResponse(status_code=status_code, content=payload, headers=headers)


def _field_errors(exc: RequestValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        name = ".".join(location) or "payload"
        errors.setdefault(name, []).append(error.get("msg", "Invalid value."))
    return errors


def install_error_handlers(app: FastAPI) -> None:
    """Register the directory's exception handlers on ``app``."""

    @app.exception_handler(DirectoryError)
    def handle_directory_error(request: Request, exc: DirectoryError) -> JSONResponse:
        return _respond(request, exc)

    @app.exception_handler(RequestValidationError)
    def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _respond(request, ValidationFailedError(_field_errors(exc), "The given data was invalid."))

    @app.exception_handler(Exception)
    def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        # the mapper logs the traceback
        return _respond(request, exc)
