"""
Echo Portal API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from echo_server.api.v1 import router as api_v1_router
from echo_server.api.v1.auth import router as auth_router
from echo_server.core.api_keys import API_KEY_HEADER
from echo_server.core.config import get_settings
from echo_server.core.database import init_db, ping_db
from echo_server.core.errors import register_exception_handlers
from echo_server.core.logging import REQUEST_ID_HEADER, RequestLoggingMiddleware, configure_logging
from echo_server.core.middleware import CSRF_HEADER, CSRFMiddleware, SecurityHeadersMiddleware
from echo_server.core.org_context import ORG_HEADER
from echo_server.core.redis import close_redis, ping_redis

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Echo Portal",
        description="Multi-tenant feedback portal: organizations, members, invitations and API keys.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    register_exception_handlers(app)

    # Middleware (last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            CSRF_HEADER,
            API_KEY_HEADER,
            ORG_HEADER,
            REQUEST_ID_HEADER,
        ],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # Auth routes (not org-scoped)
    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: database and Redis must both answer."""
        checks = {"database": await ping_db(), "redis": await ping_redis()}
        if not all(checks.values()):
            log.warning("readiness.failed", **checks)
            return JSONResponse(status_code=503, content={"status": "unavailable", "checks": checks})
        return {"status": "ready", "checks": checks}

    @app.on_event("startup")
    async def on_startup():
        log.info("echo.starting", rate_limit_backend=settings.rate_limit_backend)
        if settings.create_tables:
            await init_db()
            log.info("echo.tables_created")

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("echo.shutting_down")
        await close_redis()

    return app


app = create_app()
