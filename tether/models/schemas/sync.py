"""
Sync Schemas
Models for manual and scheduled sync operations
"""
from typing import Optional
from pydantic import BaseModel


class ManualSyncResponse(BaseModel):
    """Response for POST /integrations/{provider}/sync."""
    imported: int


class ScheduledSyncResponse(BaseModel):
    """
    Response for POST /cron/sync.
    attempted == success + failed; skipped accounts were in backoff.
    """
    ok: bool = True
    attempted: int
    skippedBackoff: int
    success: int
    failed: int


class EnqueueResponse(BaseModel):
    """Response for POST /cron/sync/enqueue."""
    ok: bool = True
    message_id: Optional[str] = None
