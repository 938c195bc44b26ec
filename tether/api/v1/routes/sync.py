"""
Scheduled Sync Routes
Entry points for the external scheduler (cron)

Both endpoints require Authorization: Bearer <CRON_SECRET>. The bearer is
checked before any sync service is built, so a bad caller never touches
storage or secrets.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends

from tether.core.config import Settings, get_settings
from tether.core.dependencies import get_orchestrator
from tether.core.security import get_bearer_token
from tether.models.schemas import EnqueueResponse, ScheduledSyncResponse
from tether.services.sync.orchestration.scheduled_sync import SyncOrchestrator, authenticate_scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


async def require_scheduler(
    bearer: Optional[str] = Depends(get_bearer_token),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    authenticate_scheduler(settings.cron_secret, bearer)
    return bearer


@router.post("/sync", response_model=ScheduledSyncResponse)
async def scheduled_sync(
    bearer: Optional[str] = Depends(require_scheduler),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Run one orchestrator pass inline and report the counts."""
    summary = await orchestrator.run_pass(bearer)
    return ScheduledSyncResponse(
        attempted=summary.attempted,
        skippedBackoff=summary.skipped_backoff,
        success=summary.success,
        failed=summary.failed,
    )


@router.post("/sync/enqueue", response_model=EnqueueResponse)
async def scheduled_sync_enqueue(bearer: Optional[str] = Depends(require_scheduler)):
    """Queue a pass for the dramatiq worker, for callers that cannot wait."""
    from tether.services.jobs.tasks import scheduled_sync_task

    message = scheduled_sync_task.send()
    logger.info(f"📥 Scheduled sync enqueued: {message.message_id}")
    return EnqueueResponse(message_id=message.message_id)
