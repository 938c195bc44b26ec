"""
Tether - Integration Sync Service
=================================
Version: 1.0.0

FastAPI application entry point.

Architecture:
- tether/core/: Configuration, dependencies, security, encryption, errors
- tether/middleware/: Error handling, logging, CORS, rate limiting
- tether/models/: Domain models and API schemas
- tether/services/sync/: Token vault, provider clients, connect flow, orchestrator
- tether/services/jobs/: Dramatiq broker and tasks
- tether/api/v1/routes/: API endpoints
"""
import sys
import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI

# Startup error handling
try:
    from tether.core.config import get_settings
    from tether.core.dependencies import initialize_clients, shutdown_clients

    from tether.middleware.error_handler import ErrorHandlerMiddleware, register_exception_handlers
    from tether.middleware.logging import RequestLoggingMiddleware
    from tether.middleware.cors import get_cors_middleware
    from tether.middleware.security_headers import SecurityHeadersMiddleware

    from tether.api.v1.routes.health import router as health_router
    from tether.api.v1.routes.oauth import router as integrations_router
    from tether.api.v1.routes.sync import router as cron_router

except Exception as e:
    print(f"🚨 FATAL STARTUP ERROR: {e}", file=sys.stderr)
    print(f"Traceback:\n{traceback.format_exc()}", file=sys.stderr)
    sys.exit(1)

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.environment == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# ============================================================================
# SENTRY ERROR TRACKING
# ============================================================================

if settings.sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration
        from tether.services.sync.audit import scrub_sentry_event

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,  # 10% of requests for performance monitoring
            send_default_pii=False,
            before_send=scrub_sentry_event,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry error tracking initialized")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# ============================================================================
# LIFECYCLE MANAGEMENT
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    logger.info("=" * 80)
    logger.info("Starting Tether Integration Sync Service")
    logger.info("=" * 80)
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Port: {settings.port}")
    logger.info(f"Debug: {settings.debug}")

    await initialize_clients(settings)

    logger.info("=" * 80)
    logger.info("✅ Tether started successfully")
    logger.info("=" * 80)

    yield

    logger.info("Shutting down Tether...")
    await shutdown_clients()
    logger.info("✅ Shutdown complete")


# ============================================================================
# APP INITIALIZATION
# ============================================================================

app = FastAPI(
    title="Tether API",
    description="Integration sync for Slack, Notion and Asana",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

register_exception_handlers(app)

# ============================================================================
# RATE LIMITING
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from tether.middleware.rate_limit import limiter

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
logger.info("✅ Rate limiting enabled")

# ============================================================================
# MIDDLEWARE (order matters!)
# ============================================================================

# Security headers (must be first to apply to all responses)
app.add_middleware(SecurityHeadersMiddleware, environment=settings.environment)

# CORS (after security headers)
cors_middleware, cors_config = get_cors_middleware(settings)
app.add_middleware(cors_middleware, **cors_config)

# Request logging
app.add_middleware(RequestLoggingMiddleware)

# Global error handler (must be last)
app.add_middleware(ErrorHandlerMiddleware)

# ============================================================================
# ROUTES
# ============================================================================

app.include_router(health_router)
app.include_router(integrations_router)
app.include_router(cron_router)

logger.info("✅ All routes registered")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, reload=settings.debug)
