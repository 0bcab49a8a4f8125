"""
Exception handlers translating metering errors into JSON responses.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from metering.exceptions import AuthenticationError, MeteringError

logger = logging.getLogger(__name__)


def _error_body(message: str, details=None) -> dict:
    body = {"error": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return body


async def metering_error_handler(request: Request, exc: MeteringError) -> JSONResponse:
    if exc.status_code >= 500:
        # Internals were logged where the error was raised; only the safe message goes out.
        logger.error(
            f"Request failed: {exc.message}",
            extra={"event": "request_failed", "path": request.url.path, "status": exc.status_code},
        )
    else:
        logger.warning(
            f"Request rejected: {exc.message}",
            extra={"event": "request_rejected", "path": request.url.path, "status": exc.status_code},
        )

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.details),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema rejections are client errors: 400 with the issue list."""
    logger.warning(
        "Invalid request payload",
        extra={"event": "request_invalid", "path": request.url.path, "issues": len(exc.errors())},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("Invalid request data", exc.errors()),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MeteringError, metering_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
