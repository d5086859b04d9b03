"""
Response envelope and exception handlers.

Every JSON body has the shape ``{statusCode, success, message, data}``.
Errors are logged with their full cause here and answered with the error's
generic public message only.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from auth.errors import CredentialServiceError, ExternalAuthError

logger = logging.getLogger(__name__)


def api_response(
    data: Any = None,
    message: str = "OK",
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """Wrap ``data`` in the standard envelope."""
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "success": 200 <= status_code < 400,
            "message": message,
            "data": jsonable_encoder(data),
        },
    )


def error_response(status_code: int, message: str, data: Any = None) -> JSONResponse:
    return api_response(data=data, message=message, status_code=status_code)


async def credential_error_handler(request: Request, exc: CredentialServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        extra = f" detail={exc.detail}" if isinstance(exc, ExternalAuthError) and exc.detail else ""
        logger.error(
            "%s %s failed: %s: %s%s",
            request.method,
            request.url.path,
            exc.__class__.__name__,
            exc,
            extra,
            exc_info=exc,
        )
    else:
        logger.warning("%s %s rejected: %s: %s", request.method, request.url.path, exc.__class__.__name__, exc)
    return error_response(exc.status_code, exc.public_message)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    response = error_response(exc.status_code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "error": err.get("msg")}
        for err in exc.errors()
    ]
    logger.info("%s %s invalid request: %s", request.method, request.url.path, errors)
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, "Invalid request", data=errors)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CredentialServiceError, credential_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = ["api_response", "error_response", "register_exception_handlers"]
