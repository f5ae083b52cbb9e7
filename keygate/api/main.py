"""FastAPI application configuration and setup.

Main entry point for the HTTP API with CORS, middleware,
rate limiting, the page route guard, and lifecycle management.
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from keygate import __version__
from keygate.api.rate_limit import MAX_REQUEST_BODY_BYTES, limiter
from keygate.api.routes import api_router
from keygate.auth.service import build_auth_service
from keygate.exceptions import CeremonyError, CeremonyType, KeygateError
from keygate.settings import Settings, get_settings
from keygate.storage import close_db, init_db

# Context variable for correlation ID (thread-safe, async-safe)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Singleton app instance
_app: FastAPI | None = None

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    - Startup: verify database connectivity (database backend only)
    - Shutdown: close database connections

    Args:
        app: FastAPI application instance

    Yields:
        None (context for application runtime)
    """
    settings: Settings = app.state.settings
    uses_database = settings.credential_backend == "database"

    if uses_database and settings.environment != "testing":
        await init_db()

    yield

    if uses_database:
        await close_db()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    The authentication service is built here (not in the lifespan) so a
    missing production secret fails at startup and tests can drive the app
    through ASGITransport without running lifespan events.

    Args:
        settings: Optional settings override (uses get_settings() if not provided)

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Keygate",
        description="Passwordless WebAuthn authentication and sessions",
        version=__version__,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        openapi_url="/api/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.auth_service = build_auth_service(settings)

    # Configure CORS (credentials are allowed, so never a wildcard in production)
    allowed_methods = ["*"] if settings.environment in ("development", "testing") else [
        "GET", "POST", "OPTIONS",
    ]
    allowed_headers = ["*"] if settings.environment in ("development", "testing") else [
        "Authorization", "Content-Type", "X-Correlation-ID",
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=allowed_methods,
        allow_headers=allowed_headers,
    )

    # Configure rate limiting
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Page route guard (redirects to/from the login page)
    from keygate.api.middleware import RequestTracingMiddleware, SessionGuardMiddleware

    app.add_middleware(
        SessionGuardMiddleware,
        guarded_paths=settings.guarded_path_list,
        login_path=settings.login_path,
    )

    # Add request body size limit middleware (prevents DoS via oversized payloads)
    app.middleware("http")(_body_size_limit_middleware)

    # Add security headers middleware
    app.middleware("http")(_security_headers_middleware)

    # Add correlation ID middleware (must be before routes)
    app.middleware("http")(_correlation_middleware)

    # Request tracing (outermost)
    app.add_middleware(RequestTracingMiddleware)

    app.include_router(api_router, prefix="/api/v1")

    _register_exception_handlers(app, settings)

    return app


def _get_allowed_origins(settings: Settings) -> list[str]:
    """Get allowed CORS origins based on environment.

    Priority:
    1. Explicit ALLOWED_ORIGINS env var (comma-separated)
    2. Environment-based defaults

    Args:
        settings: Application settings

    Returns:
        List of allowed origins
    """
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]

    if settings.environment in ("development", "testing"):
        return ["*"]
    # Staging/production: only the WebAuthn origin (the site the passkeys belong to)
    return [settings.webauthn_origin]


async def _body_size_limit_middleware(request: Request, call_next):
    """Middleware to reject requests with oversized bodies.

    Args:
        request: FastAPI request object
        call_next: Next middleware/handler

    Returns:
        Response, or 413 if content-length exceeds the limit
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_BODY_BYTES:
        return JSONResponse(
            status_code=413,
            content={
                "error": {
                    "code": 413,
                    "message": f"Request body too large. Maximum size is {MAX_REQUEST_BODY_BYTES} bytes.",
                    "type": "request_too_large",
                }
            },
        )

    return await call_next(request)


async def _security_headers_middleware(request: Request, call_next):
    """Middleware to add security-related HTTP headers.

    Args:
        request: FastAPI request object
        call_next: Next middleware/handler

    Returns:
        Response with security headers
    """
    settings: Settings = request.app.state.settings
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    # HSTS: enforce HTTPS in production/staging
    if settings.environment in ("production", "staging"):
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    # API endpoints return JSON, so a strict CSP is appropriate.
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

    # Challenges and session state must never be cached
    if request.url.path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"

    return response


async def _correlation_middleware(request: Request, call_next):
    """Middleware to generate and propagate correlation IDs.

    Args:
        request: FastAPI request object
        call_next: Next middleware/handler in the chain

    Returns:
        Response with X-Correlation-ID header
    """
    correlation_id = request.headers.get("X-Correlation-ID")
    if not correlation_id:
        correlation_id = str(uuid.uuid4())

    _correlation_id.set(correlation_id)

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id

    return response


def get_correlation_id() -> str | None:
    """Get the current request's correlation ID from context.

    Returns:
        Correlation ID string or None if not in request context
    """
    return _correlation_id.get()


def _error_response(
    status_code: int,
    error_type: str,
    message: str,
    correlation_id: str,
    **extra: Any,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": status_code,
                "type": error_type,
                "message": message,
                "correlation_id": correlation_id,
                **extra,
            }
        },
        headers={"X-Correlation-ID": correlation_id},
    )


def _register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Register custom exception handlers.

    Ceremony failures are rendered identically whatever their internal
    cause, so responses never reveal which credentials exist.

    Args:
        app: FastAPI application
        settings: Application settings
    """

    @app.exception_handler(CeremonyError)
    async def ceremony_error_handler(request: Request, exc: CeremonyError) -> JSONResponse:
        """Handle failed registration/authentication ceremonies."""
        correlation_id = get_correlation_id() or exc.correlation_id
        log = logger.warning if exc.code == "possible_cloning" else logger.info
        log(
            "ceremony_failed",
            ceremony=exc.ceremony.value,
            reason=exc.code,
            correlation_id=correlation_id,
        )

        if exc.ceremony is CeremonyType.REGISTRATION:
            error_type, message = "registration_failed", "Registration failed, please try again."
        else:
            error_type, message = "authentication_failed", "Authentication failed, please try again."
        extra = {"reason": exc.code} if settings.debug else {}
        return _error_response(exc.status_code, error_type, message, correlation_id, **extra)

    @app.exception_handler(KeygateError)
    async def keygate_error_handler(request: Request, exc: KeygateError) -> JSONResponse:
        """Handle Keygate application errors with correlation ID."""
        correlation_id = get_correlation_id() or exc.correlation_id
        status_code = exc.status_code

        if status_code >= 500:
            logger.error(
                "Keygate error",
                error_type=exc.code,
                correlation_id=correlation_id,
                exc_info=exc,
            )
            message = str(exc) if settings.debug else f"An error occurred. Correlation ID: {correlation_id}"
        else:
            logger.info("request_rejected", error_type=exc.code, correlation_id=correlation_id)
            message = str(exc)

        return _error_response(status_code, exc.code, message, correlation_id)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle malformed request bodies and query parameters."""
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        extra = {"detail": exc.errors()} if settings.debug else {}
        return _error_response(422, "invalid_request", "Malformed request", correlation_id, **extra)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle HTTP exceptions with consistent format."""
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        return _error_response(exc.status_code, "http_error", str(exc.detail), correlation_id)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        logger.exception("Unhandled exception", correlation_id=correlation_id, exc_info=exc)

        detail = str(exc) if settings.debug else "Internal server error"
        return _error_response(500, "internal_error", detail, correlation_id)


def get_app() -> FastAPI:
    """Get or create the singleton FastAPI application.

    Returns:
        FastAPI application instance
    """
    global _app
    if _app is None:
        _app = create_app()
    return _app


# For uvicorn: use "keygate.api.main:get_app" with --factory flag,
# or "keygate.api.main:app" which lazily initializes on first access.
def __getattr__(name: str) -> Any:
    """Module-level __getattr__ for lazy app initialization.

    Only creates the app when 'app' is accessed, not at import time, so
    importing this module never needs a configured secret or database.
    """
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
