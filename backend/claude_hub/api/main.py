"""
Claude Hub - FastAPI Application
================================

Main application factory with routers, error mapping and lifespan.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from claude_hub.api import claude, webhooks
from claude_hub.api.deps import close_services, get_artifact_store, get_session_manager
from claude_hub.core.config import settings
from claude_hub.core.credentials import get_vault
from claude_hub.core.exceptions import (
    ClaudeHubError,
    CommandFailed,
    ConfigurationError,
    SessionNotFound,
    SessionStateError,
    ValidationError,
    WebhookVerificationError,
)
from claude_hub.core.logs import configure_logging
from claude_hub.core.sanitize import new_error_reference
from claude_hub.core.schemas import ErrorResponse, HealthResponse
from claude_hub.core.sessions.manager import SessionManager

# Configure structured logging; credentials load first so redaction never re-enters the vault
get_vault()
configure_logging(
    lambda: get_vault().known_values(),
    level=settings.LOG_LEVEL,
    json_output=settings.is_production,
)

logger = structlog.get_logger()

STATUS_BY_ERROR = [
    (WebhookVerificationError, status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED"),
    (SessionNotFound, status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    (SessionStateError, status.HTTP_409_CONFLICT, "CONFLICT"),
    (ValidationError, status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR"),
]


# ==========================================================================
# Lifespan
# ==========================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup:
    - Refuse to start without a bot identity
    - Start the artifact retention sweep

    Shutdown:
    - Stop running sessions
    - Flush artifacts and close the GitHub client
    """
    logger.info("Starting Claude Hub", version=settings.APP_VERSION, environment=settings.ENVIRONMENT)

    if not settings.BOT_USERNAME:
        raise ConfigurationError("BOT_USERNAME must be set")

    vault = get_vault()
    logger.info("Credentials loaded", available=vault.available_keys())
    if not vault.has("GITHUB_TOKEN"):
        logger.warning("GITHUB_TOKEN is not configured; commands will be rejected")

    await get_artifact_store().start_pruner()
    get_session_manager()

    yield

    logger.info("Shutting down Claude Hub")
    await close_services()
    logger.info("Services closed")


# ==========================================================================
# Error responses
# ==========================================================================

def _opaque_error(reference_id: str, timestamp: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": message, "errorReference": reference_id, "timestamp": timestamp},
    )


# ==========================================================================
# App Factory
# ==========================================================================

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Claude Hub - GitHub webhook bridge for containerized Claude agents",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # ==========================================================================
    # Exception Handlers
    # ==========================================================================

    @app.exception_handler(CommandFailed)
    async def command_failed_handler(request: Request, exc: CommandFailed) -> JSONResponse:
        return _opaque_error(exc.error_id, exc.timestamp, str(exc))

    @app.exception_handler(ClaudeHubError)
    async def service_error_handler(request: Request, exc: ClaudeHubError) -> JSONResponse:
        for error_type, status_code, code in STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                logger.info("Request rejected", path=request.url.path, code=code, error=str(exc))
                return JSONResponse(
                    status_code=status_code,
                    content=ErrorResponse(error=str(exc), code=code).model_dump(exclude_none=True),
                )
        return await global_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        reference = new_error_reference()
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            error_id=reference.error_id,
            path=request.url.path,
            method=request.method,
        )
        return _opaque_error(reference.error_id, reference.timestamp, "Internal Server Error")

    # ==========================================================================
    # Routers
    # ==========================================================================

    # Health check (no prefix)
    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    async def health_check(manager: SessionManager = Depends(get_session_manager)) -> HealthResponse:
        return HealthResponse(
            status="healthy",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            sessions=len(manager),
        )

    app.include_router(webhooks.router, prefix=settings.API_PREFIX)
    app.include_router(claude.router, prefix=settings.API_PREFIX)

    return app


# ==========================================================================
# Application Instance
# ==========================================================================

app = create_app()


# ==========================================================================
# Development Server
# ==========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "claude_hub.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="info",
    )
