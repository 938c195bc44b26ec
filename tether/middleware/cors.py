"""
CORS Configuration
Cross-Origin Resource Sharing settings for the web app

SECURITY:
- Explicit origin whitelist from CORS_ALLOWED_ORIGINS
- Development: also allows localhost
- NO "null" origin (prevents file:// attacks)
"""
import logging
from fastapi.middleware.cors import CORSMiddleware as FastAPICORSMiddleware

from tether.core.config import Settings

logger = logging.getLogger(__name__)

DEV_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def allowed_origins(settings: Settings) -> list[str]:
    origins = [o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip() and o.strip() != "null"]
    if settings.environment == "development":
        origins.extend(o for o in DEV_ORIGINS if o not in origins)
    return origins


def get_cors_middleware(settings: Settings):
    """
    Returns configured CORS middleware with environment-based settings.
    """
    origins = allowed_origins(settings)
    logger.info(f"🌐 CORS allowed origins: {origins}")

    return FastAPICORSMiddleware, {
        "allow_origins": origins,
        "allow_credentials": True,  # the OAuth handshake cookie
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": [
            "Content-Type",
            "Authorization",
            "X-Request-ID",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,
    }
