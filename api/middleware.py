"""
HTTP middleware: CORS and request logging.
"""

import logging
import os
import time

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

HEALTH_PATHS = frozenset({"/", "/healthz", "/readyz"})


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def setup_middlewares(app: FastAPI) -> None:
    """
    Configure CORS.

    Session tokens travel in cookies, so credentials are allowed. A wildcard
    origin is only honored without credentials by browsers; set CORS_ORIGINS
    to the real frontend origins in production.
    """
    from fastapi.middleware.cors import CORSMiddleware

    cors_origins = _cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("Middlewares configured: CORS (origins=%s)", cors_origins)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and latency. Query strings are not logged."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start_time

        if request.url.path not in HEALTH_PATHS:
            logger.info(
                "%s %s - %d (%.3fs)",
                request.method,
                request.url.path,
                response.status_code,
                elapsed,
            )
        return response


def setup_request_logging(app: FastAPI) -> None:
    app.add_middleware(RequestLoggingMiddleware)
    logger.info("Request logging middleware configured")
