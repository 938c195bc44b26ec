"""
Dependency Injection
Provides reusable dependencies for FastAPI routes and the worker

DEPENDENCIES:
- Supabase client (database + auth)
- Redis client (OAuth handshakes, job queue)
- HTTP client (provider APIs)
- Sync services built from the above (orchestrator, connect flow)
"""
import logging
from typing import Optional

import httpx
import redis
from supabase import Client, ClientOptions, create_client

from tether.core.config import Settings, get_settings
from tether.core.encryption import SecretCipher
from tether.services.sync.audit import IntegrationAuditLog
from tether.services.sync.connect import ConnectService
from tether.services.sync.database import LinkedAccountRegistry, SyncCursorStore
from tether.services.sync.handshake import HandshakeStore, MemoryHandshakeStore, RedisHandshakeStore
from tether.services.sync.health import SyncHealthTracker
from tether.services.sync.orchestration.scheduled_sync import SyncOrchestrator
from tether.services.sync.persistence import ItemIngestor
from tether.services.sync.providers.base import build_provider_registry
from tether.services.sync.vault import TokenVault

logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL CLIENTS (initialized once, reused across requests)
# ============================================================================

_supabase_client: Optional[Client] = None
_redis_client: Optional[redis.Redis] = None
_http_client: Optional[httpx.AsyncClient] = None
_handshake_store: Optional[HandshakeStore] = None


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
    )


def create_supabase_client(settings: Settings) -> Client:
    # Storage calls are synchronous, so the per-account wait_for cannot cut them short
    return create_client(
        settings.supabase_url,
        settings.supabase_service_key,  # Sync runs with the service role
        options=ClientOptions(postgrest_client_timeout=settings.storage_timeout_seconds),
    )


# ============================================================================
# INITIALIZATION (called on app startup)
# ============================================================================

async def initialize_clients(settings: Optional[Settings] = None):
    """
    Initialize all global clients on app startup.

    Called from main.py lifespan event.
    """
    global _supabase_client, _redis_client, _http_client, _handshake_store
    settings = settings or get_settings()

    logger.info("Initializing global clients...")

    # Supabase
    try:
        _supabase_client = create_supabase_client(settings)
        logger.info("✅ Supabase client initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase: {e}")
        raise

    # Redis (optional for local dev)
    _redis_client = None
    if settings.redis_url:
        try:
            _redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5
            )
            # Test connection
            _redis_client.ping()
            logger.info("✅ Redis client initialized")
        except Exception as e:
            logger.warning(f"⚠️  Redis not available: {e}")
            _redis_client = None

    if _redis_client is not None:
        _handshake_store = RedisHandshakeStore(_redis_client)
    else:
        logger.warning("⚠️  Using in-process OAuth handshake store (single worker only)")
        _handshake_store = MemoryHandshakeStore()

    _http_client = create_http_client(settings)
    logger.info("✅ All clients initialized successfully")


async def shutdown_clients():
    """
    Shutdown all global clients on app shutdown.

    Called from main.py lifespan event.
    """
    global _supabase_client, _redis_client, _http_client, _handshake_store

    logger.info("Shutting down global clients...")

    if _http_client:
        try:
            await _http_client.aclose()
            logger.info("✅ HTTP client closed")
        except Exception as e:
            logger.error(f"Error closing HTTP client: {e}")

    if _redis_client:
        try:
            _redis_client.close()
            logger.info("✅ Redis client closed")
        except Exception as e:
            logger.error(f"Error closing Redis: {e}")

    # Supabase doesn't need explicit cleanup
    _supabase_client = None
    _redis_client = None
    _http_client = None
    _handshake_store = None

    logger.info("✅ All clients shutdown complete")


# ============================================================================
# SERVICE BUILDERS (shared by the API and the worker)
# ============================================================================

def build_orchestrator(settings: Settings, supabase: Client, http_client: httpx.AsyncClient) -> SyncOrchestrator:
    registry = LinkedAccountRegistry(supabase)
    return SyncOrchestrator(
        settings=settings,
        providers=build_provider_registry(settings, http_client),
        registry=registry,
        vault=TokenVault(supabase, SecretCipher.from_settings(settings)),
        health=SyncHealthTracker.from_settings(registry, settings),
        ingestor=ItemIngestor(supabase),
        cursors=SyncCursorStore(supabase),
        audit=IntegrationAuditLog(supabase),
    )


def build_connect_service(
    settings: Settings,
    supabase: Client,
    http_client: httpx.AsyncClient,
    handshakes: HandshakeStore,
) -> ConnectService:
    return ConnectService(
        settings=settings,
        providers=build_provider_registry(settings, http_client),
        registry=LinkedAccountRegistry(supabase),
        vault=TokenVault(supabase, SecretCipher.from_settings(settings)),
        handshakes=handshakes,
        audit=IntegrationAuditLog(supabase),
    )


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_supabase() -> Client:
    """
    Get Supabase client for dependency injection.

    Returns:
        Supabase client (service role)
    """
    if _supabase_client is None:
        logger.error("Supabase client not initialized")
        raise RuntimeError("Supabase client not initialized. Call initialize_clients() first.")

    return _supabase_client


def get_http_client() -> httpx.AsyncClient:
    if _http_client is None:
        raise RuntimeError("HTTP client not initialized. Call initialize_clients() first.")
    return _http_client


def get_orchestrator() -> SyncOrchestrator:
    return build_orchestrator(get_settings(), get_supabase(), get_http_client())


def get_connect_service() -> ConnectService:
    if _handshake_store is None:
        raise RuntimeError("Handshake store not initialized. Call initialize_clients() first.")
    return build_connect_service(get_settings(), get_supabase(), get_http_client(), _handshake_store)
