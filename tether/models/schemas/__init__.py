"""
Pydantic Schemas
All request/response models for API endpoints
"""

# Connector schemas (OAuth connect flow)
from .connector import ConnectStartResponse

# Health check schemas
from .health import HealthResponse

# Sync schemas
from .sync import EnqueueResponse, ManualSyncResponse, ScheduledSyncResponse

__all__ = [
    # Connector
    "ConnectStartResponse",
    # Health
    "HealthResponse",
    # Sync
    "ManualSyncResponse",
    "ScheduledSyncResponse",
    "EnqueueResponse",
]
