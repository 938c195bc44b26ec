"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- Settings are read ONCE (get_settings) and handed to every component
- No component reads os.environ on its own
- Missing secrets are reported at startup and raise ConfigurationError
  the first time a component actually needs them

SECURITY:
- All secrets loaded from environment variables
- No hardcoded credentials
"""
from functools import lru_cache
from typing import Optional
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the integration sync service.
    Validates all environment variables at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================================================
    # SERVER
    # ============================================================================

    environment: str = Field(default="production", description="Environment: development/staging/production/test")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    site_url: str = Field(default="http://localhost:3000", description="Public base URL (OAuth redirect URIs are built from it)")

    # ============================================================================
    # DATABASE (Supabase PostgreSQL)
    # ============================================================================

    supabase_url: Optional[str] = Field(default=None, description="Supabase project URL")
    supabase_service_key: Optional[str] = Field(default=None, description="Supabase service key (sync runs with admin rights)")

    # Redis (job queue + OAuth handshake store)
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL")

    # ============================================================================
    # SECRETS
    # ============================================================================

    app_encryption_key: Optional[str] = Field(default=None, description="Base64 encoded 32 byte AES-256-GCM key for tokens at rest")
    cron_secret: Optional[str] = Field(default=None, description="Shared bearer secret for the scheduled sync caller")
    oauth_cookie_secret: Optional[str] = Field(default=None, description="HMAC key for the OAuth handshake cookie")

    # ============================================================================
    # OAUTH PROVIDERS
    # ============================================================================

    slack_client_id: Optional[str] = Field(default=None, description="Slack OAuth client ID")
    slack_client_secret: Optional[str] = Field(default=None, description="Slack OAuth client secret")
    notion_client_id: Optional[str] = Field(default=None, description="Notion OAuth client ID")
    notion_client_secret: Optional[str] = Field(default=None, description="Notion OAuth client secret")
    asana_client_id: Optional[str] = Field(default=None, description="Asana OAuth client ID")
    asana_client_secret: Optional[str] = Field(default=None, description="Asana OAuth client secret")

    # ============================================================================
    # SYNC
    # ============================================================================

    sync_backoff_base_minutes: float = Field(default=2, gt=0, description="Backoff after the first consecutive failure")
    sync_backoff_max_minutes: float = Field(default=60, gt=0, description="Upper bound for the backoff delay")
    sync_list_limit: int = Field(default=5000, gt=0, description="Max linked accounts read per orchestrator pass")
    sync_concurrency: int = Field(default=1, ge=1, description="Accounts synced in parallel (1 = sequential)")
    sync_account_timeout_seconds: float = Field(default=120, gt=0, description="Upper bound for one account's sync attempt")
    http_timeout_seconds: float = Field(default=30, gt=0, description="Per request timeout for provider calls")
    storage_timeout_seconds: float = Field(default=10, gt=0, description="Per request timeout for Supabase calls")

    oauth_handshake_ttl_seconds: int = Field(default=600, gt=0, description="Lifetime of a pending OAuth handshake")
    return_to_prefix: str = Field(default="/app", description="Only internal paths under this prefix are valid post-auth destinations")

    # ============================================================================
    # PRODUCTION INFRASTRUCTURE
    # ============================================================================

    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    cors_allowed_origins: str = Field(default="http://localhost:3000", description="Comma-separated list of allowed CORS origins")

    @model_validator(mode='after')
    def validate_settings(self):
        """
        Validate critical settings at startup.

        Only warns: components raise ConfigurationError themselves when a
        secret they need is missing.
        """
        if self.sync_backoff_max_minutes < self.sync_backoff_base_minutes:
            raise ValueError("sync_backoff_max_minutes must be >= sync_backoff_base_minutes")

        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION! This is insecure.")
            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        if not self.app_encryption_key:
            logger.warning("⚠️  APP_ENCRYPTION_KEY not set. Token storage will fail.")
        if not self.cron_secret:
            logger.warning("⚠️  CRON_SECRET not set. Scheduled sync invocations will be rejected.")
        if not self.oauth_cookie_secret:
            logger.warning("⚠️  OAUTH_COOKIE_SECRET not set. Connect flows will fail.")

        logger.info("=" * 80)
        logger.info("Tether Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Debug: {self.debug}")
        logger.info(f"Supabase: {'✅ Configured' if self.supabase_url else '❌ Not configured'}")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info(f"Slack OAuth: {'✅ Configured' if self.slack_client_id else '❌ Not configured'}")
        logger.info(f"Notion OAuth: {'✅ Configured' if self.notion_client_id else '❌ Not configured'}")
        logger.info(f"Asana OAuth: {'✅ Configured' if self.asana_client_id else '❌ Not configured'}")
        logger.info(f"Backoff: {self.sync_backoff_base_minutes}m base, {self.sync_backoff_max_minutes}m cap")
        logger.info(f"Sentry: {'✅ Configured' if self.sentry_dsn else '❌ Not configured'}")
        logger.info("=" * 80)

        return self

    def provider_credentials(self, provider: str) -> tuple[Optional[str], Optional[str]]:
        """Return (client_id, client_secret) for a provider key."""
        return (
            getattr(self, f"{provider}_client_id", None),
            getattr(self, f"{provider}_client_secret", None),
        )


@lru_cache
def get_settings() -> Settings:
    """Build the process-wide settings once."""
    return Settings()
