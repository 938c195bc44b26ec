"""
Dramatiq Background Tasks
Runs the scheduled sync pass inside a worker process
"""
import asyncio
import logging

import dramatiq

from tether.services.jobs.broker import broker  # noqa: F401  (registers the broker)

logger = logging.getLogger(__name__)


def get_sync_dependencies():
    """
    Create fresh instances of dependencies for background tasks.
    Dramatiq workers run in separate processes, so we can't share global clients.
    """
    from tether.core.config import get_settings
    from tether.core.dependencies import create_http_client, create_supabase_client

    settings = get_settings()
    http_client = create_http_client(settings)
    supabase = create_supabase_client(settings)
    return settings, http_client, supabase


async def _run_pass_with_cleanup(settings, http_client, supabase) -> dict:
    from tether.core.dependencies import build_orchestrator

    try:
        orchestrator = build_orchestrator(settings, supabase, http_client)
        summary = await orchestrator.run_authenticated_pass()
        return summary.model_dump()
    finally:
        # Close the HTTP client in the same event loop that used it
        await http_client.aclose()


@dramatiq.actor(max_retries=0)
def scheduled_sync_task():
    """
    One orchestrator pass over all linked accounts.

    Not retried: a failed pass is simply followed by the next scheduled one,
    and per-account retries are owned by the backoff schedule.
    """
    logger.info("🚀 Starting scheduled sync job")

    settings, http_client, supabase = get_sync_dependencies()
    try:
        result = asyncio.run(_run_pass_with_cleanup(settings, http_client, supabase))
    except Exception as e:
        logger.error(f"❌ Scheduled sync job failed: {e}")
        raise

    logger.info(f"✅ Scheduled sync job complete: {result}")
    return result
