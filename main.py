"""
Main Entry Point - FastAPI Application.

Wires the Microsoft Graph credential service together:
- FastAPI app initialization and lifespan
- Route mounting from api/routes/
- Middleware and exception handler setup
- Health check endpoints

NO BUSINESS LOGIC - just wiring and setup.

Usage:
    uvicorn main:app --reload
    python main.py
"""

import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables with explicit path (works when run from any directory)
_env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(_env_path)

# ============================================================================
# NON-BLOCKING LOGGING SETUP (MUST BE BEFORE OTHER IMPORTS)
# ============================================================================
from utils.logger_config import configure_non_blocking_logging, stop_logging

_log_listener = configure_non_blocking_logging(level=os.getenv("LOG_LEVEL"))

from api.dependencies import reset_dependencies
from api.middleware import setup_middlewares, setup_request_logging
from api.responses import register_exception_handlers
from api.routes import auth_router, ms_graph_router
from auth.crypto import get_token_cipher
from auth.microsoft import get_microsoft_oauth_settings
from auth.session import get_session_token_settings
from db.connection_pool import close_all_connections

logger = logging.getLogger(__name__)

SERVICE_NAME = "graph-credential-service"
VERSION = "1.0.0"


# =============================================================================
# LIFESPAN EVENTS
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Validate required configuration before serving.

    A missing secret raises ConfigurationError here and the process does not
    start.
    """
    logger.info("Graph credential service starting up...")
    get_microsoft_oauth_settings()
    get_token_cipher()
    get_session_token_settings()
    logger.info("Configuration loaded")
    yield
    logger.info("Graph credential service shutting down...")
    reset_dependencies()
    close_all_connections()
    stop_logging()


# =============================================================================
# FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="Microsoft Graph Credential Service",
    description="Microsoft OAuth token custody and authenticated Graph access",
    version=VERSION,
    lifespan=lifespan,
)

setup_middlewares(app)
setup_request_logging(app)
register_exception_handlers(app)


# =============================================================================
# ROUTES
# =============================================================================

# Session tokens (router has /auth prefix)
app.include_router(auth_router)

# Microsoft connection and OneDrive (router has /ms-graph prefix)
app.include_router(ms_graph_router)


# =============================================================================
# HEALTH CHECK
# =============================================================================

@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint - health check."""
    return {"status": "ok", "version": VERSION, "service": SERVICE_NAME}


@app.get("/healthz", include_in_schema=False)
async def healthz():
    """Kubernetes liveness probe."""
    return {"status": "healthy"}


@app.get("/readyz", include_in_schema=False)
async def readyz():
    """Kubernetes readiness probe."""
    return {"status": "ready"}


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    # Health probes hit every few seconds
    class _HealthCheckFilter(logging.Filter):
        _SUPPRESSED = {"/healthz", "/readyz", "/"}

        def filter(self, record: logging.LogRecord) -> bool:
            msg = record.getMessage()
            return not any(f'"GET {path} ' in msg for path in self._SUPPRESSED)

    logging.getLogger("uvicorn.access").addFilter(_HealthCheckFilter())

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        workers=int(os.getenv("UVICORN_WORKERS", "1")),
        log_level=os.getenv("UVICORN_LOG_LEVEL", "info").lower(),
    )
