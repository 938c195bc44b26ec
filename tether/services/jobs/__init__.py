"""
Background Job Queue
Dramatiq-based async task processing
"""
from tether.services.jobs.broker import broker
from tether.services.jobs.tasks import scheduled_sync_task

__all__ = ["broker", "scheduled_sync_task"]
