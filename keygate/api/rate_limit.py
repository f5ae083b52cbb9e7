"""Rate limiting for the ceremony endpoints.

Provides a shared Limiter instance that route modules import to apply
per-endpoint limits. Begin-* endpoints mint challenges and finish-*
endpoints run signature verification, so both are limited per client IP.

Usage in route modules:
    from keygate.api.rate_limit import limiter

    @router.post("/login-verify")
    @limiter.limit(VERIFY_LIMIT)
    async def login_verify(request: Request, ...):
        ...
"""

from slowapi import Limiter
from starlette.requests import Request

OPTIONS_LIMIT = "30/minute"
VERIFY_LIMIT = "10/minute"

# Maximum request body size (bytes). Applied via middleware in main.py.
MAX_REQUEST_BODY_BYTES = 1_048_576  # 1 MB


def _get_real_client_ip(request: Request) -> str:
    """Extract the real client IP, respecting X-Forwarded-For from trusted proxies.

    Args:
        request: Starlette/FastAPI request object.

    Returns:
        Client IP address string.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For: client, proxy1, proxy2; take the leftmost (client)
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "127.0.0.1"


limiter = Limiter(key_func=_get_real_client_ip)
