"""
FastAPI Application Factory

Creates and configures the FastAPI application.
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from eduguard.core.config import Config, config as default_config
from eduguard.core.constants import APP_NAME, APP_VERSION, APP_DESCRIPTION
from eduguard.core.exceptions import (
    AuditQueryError,
    AuditSinkError,
    ConfigurationError,
    EduGuardException,
    RateLimitExceeded,
    SecurityBlocked,
)
from eduguard.api.http.routes import router as http_router
from eduguard.api.middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from eduguard.observability.tracing import setup_tracing
from eduguard.security.context import SecurityContext


EXCEPTION_STATUS = {
    RateLimitExceeded: 429,
    SecurityBlocked: 423,
    AuditQueryError: 503,
    AuditSinkError: 503,
    ConfigurationError: 500,
}


def create_app(
    security: Optional[SecurityContext] = None,
    config_obj: Optional[Config] = None
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        security: SecurityContext to serve (built from config if omitted)
        config_obj: Configuration (default: global config)

    Returns:
        Configured FastAPI application

    Example:
        >>> app = create_app()
        >>> uvicorn.run(app, host="0.0.0.0", port=8000)
    """
    config_obj = config_obj or default_config
    if security is None:
        security = SecurityContext.from_config(config_obj)

    # Create FastAPI app
    app = FastAPI(
        title=APP_NAME,
        version=APP_VERSION,
        description=APP_DESCRIPTION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )
    app.state.security = security

    # Middleware added last runs first: CORS answers preflights before rate limiting
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config_obj.get('server.cors_origins', default=["*"], expected_type=list),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add exception handlers
    @app.exception_handler(EduGuardException)
    async def eduguard_exception_handler(request: Request, exc: EduGuardException):
        """Handle custom exceptions."""
        status_code = EXCEPTION_STATUS.get(type(exc), 400)
        logger.error(f"{type(exc).__name__}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content=exc.to_dict()
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.opt(exception=exc).error(f"Unexpected error: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "InternalServerError",
                "message": "An unexpected error occurred",
                "details": {"type": type(exc).__name__}
            }
        )

    # Include routers
    app.include_router(http_router, prefix="/api")

    # Instrument FastAPI app for OpenTelemetry
    FastAPIInstrumentor.instrument_app(app)

    # Startup event
    @app.on_event("startup")
    async def startup_event():
        """Run on application startup."""
        setup_tracing(config_obj.get('tracing.otlp_endpoint', default=None))
        security.start()
        logger.info(f"{APP_NAME} v{APP_VERSION} started")
        logger.info("API documentation available at /docs")

    # Shutdown event
    @app.on_event("shutdown")
    async def shutdown_event():
        """Run on application shutdown."""
        logger.info("Shutting down gracefully...")
        security.shutdown()

    return app
