"""
Health Check Routes
System status
"""
import logging
from fastapi import APIRouter

from tether.models.integration import Provider
from tether.models.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=VERSION, providers=[p.value for p in Provider])


@router.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Tether Integration Sync API",
        "version": VERSION,
        "description": "Linked accounts, OAuth connect and scheduled sync for Slack, Notion and Asana",
        "endpoints": {
            "health": "/health",
            "connect": "/integrations/{provider}/connect",
            "callback": "/integrations/{provider}/callback",
            "manual_sync": "/integrations/{provider}/sync",
            "scheduled_sync": "/cron/sync",
        }
    }
