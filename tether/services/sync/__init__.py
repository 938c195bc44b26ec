"""
Integration Sync System
Linked accounts, encrypted credentials, provider clients and the scheduled pass
"""
from tether.services.sync.audit import IntegrationAuditLog
from tether.services.sync.connect import ConnectService
from tether.services.sync.database import LinkedAccountRegistry, SyncCursorStore, link_account
from tether.services.sync.handshake import MemoryHandshakeStore, RedisHandshakeStore
from tether.services.sync.health import SyncHealthTracker, compute_backoff
from tether.services.sync.orchestration.scheduled_sync import SyncOrchestrator
from tether.services.sync.persistence import ItemIngestor
from tether.services.sync.vault import TokenVault

__all__ = [
    "IntegrationAuditLog",
    "ConnectService",
    "LinkedAccountRegistry",
    "SyncCursorStore",
    "link_account",
    "MemoryHandshakeStore",
    "RedisHandshakeStore",
    "SyncHealthTracker",
    "compute_backoff",
    "SyncOrchestrator",
    "ItemIngestor",
    "TokenVault",
]
