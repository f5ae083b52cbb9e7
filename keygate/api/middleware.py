"""HTTP middleware: request tracing and the page route guard.

RequestTracingMiddleware logs method, path, status code, duration and
correlation ID for every request. SessionGuardMiddleware keeps anonymous
visitors out of the guarded pages and sends signed-in users away from the
login page.
"""

import time
from collections.abc import Callable

import structlog
from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from keygate.api.deps import extract_session_token
from keygate.exceptions import SessionError

logger = structlog.get_logger()


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Middleware for structured request logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and log tracing information.

        Args:
            request: FastAPI request object
            call_next: Next middleware/handler in the chain

        Returns:
            Response from the downstream handler
        """
        start = time.perf_counter()

        # Lazy import to avoid circular dependency
        from keygate.api.main import get_correlation_id

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round(duration_ms, 2),
                correlation_id=get_correlation_id(),
            )
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                correlation_id=get_correlation_id(),
                error_type=type(e).__name__,
                exc_info=e,
            )
            # Re-raise to let exception handlers process it
            raise


def is_guarded(path: str, guarded_paths: list[str]) -> bool:
    """'/' matches only itself; any other entry matches as a path prefix."""
    for guarded in guarded_paths:
        if guarded == "/":
            if path == "/":
                return True
        elif path == guarded or path.startswith(guarded.rstrip("/") + "/"):
            return True
    return False


class SessionGuardMiddleware(BaseHTTPMiddleware):
    """Redirects page requests based on session state.

    - Guarded page without a valid session -> 307 to the login page.
    - Login page with a valid session -> 307 to ``/``.
    - Everything else (including the API) passes through untouched.
    """

    def __init__(self, app: ASGIApp, guarded_paths: list[str], login_path: str = "/login"):
        super().__init__(app)
        self.guarded_paths = guarded_paths
        self.login_path = login_path

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path.startswith("/api/"):
            return await call_next(request)

        if path == self.login_path:
            if self._has_valid_session(request):
                return RedirectResponse("/", status_code=307)
        elif is_guarded(path, self.guarded_paths) and not self._has_valid_session(request):
            return RedirectResponse(self.login_path, status_code=307)

        return await call_next(request)

    def _has_valid_session(self, request: Request) -> bool:
        service = request.app.state.auth_service
        token = extract_session_token(request, service.sessions.cookie_name)
        if not token:
            return False
        try:
            service.validate_session(token)
        except SessionError:
            return False
        return True
