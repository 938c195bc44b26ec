"""
Dramatiq Background Worker
Runs scheduled sync passes enqueued through POST /cron/sync/enqueue

Usage:
    dramatiq worker -p 2 -t 1

Deployment:
    - Type: Background Worker
    - Start Command: dramatiq worker -p 2 -t 1
    - Environment: Same as the API (REDIS_URL, SUPABASE_URL, APP_ENCRYPTION_KEY, ...)
"""
import logging

from tether.core.config import get_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

settings = get_settings()

# Initialize Sentry for error tracking (if configured)
if settings.sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration
        from tether.services.sync.audit import scrub_sentry_event

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
            before_send=scrub_sentry_event,
            integrations=[
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry initialized in worker")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry in worker: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# Import tasks (this registers them with Dramatiq)
try:
    from tether.services.jobs.broker import broker
    from tether.services.jobs.tasks import scheduled_sync_task

    logger.info("✅ Tether worker initialized")
    logger.info("📋 Registered tasks: scheduled_sync")

except Exception as e:
    logger.error(f"❌ Failed to initialize worker: {e}", exc_info=True)
    raise

# This module is imported by Dramatiq CLI
# Dramatiq will find the broker and tasks automatically
