from tether.services.sync.orchestration.scheduled_sync import SyncOrchestrator, authenticate_scheduler

__all__ = ["SyncOrchestrator", "authenticate_scheduler"]
