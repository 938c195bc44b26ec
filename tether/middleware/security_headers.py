"""
Security Headers Middleware
Adds security headers to all responses

HEADERS ADDED:
- Strict-Transport-Security (HSTS, production only)
- Content-Security-Policy (CSP)
- X-Content-Type-Options
- X-Frame-Options
- Referrer-Policy
"""
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to all responses.
    """

    def __init__(self, app, environment: str = "production"):
        super().__init__(app)
        self.environment = environment

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if self.environment == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"

        # Callback redirects must not leak ?code=&state= to the next site
        response.headers["Referrer-Policy"] = "no-referrer"

        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        if "server" in response.headers:
            del response.headers["server"]

        return response
