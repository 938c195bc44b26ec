"""
Scheduled sync orchestration
One pass over every linked account, plus the single-user manual sync

PASS:
1. Authenticate the caller (shared bearer secret, fails closed)
2. List linked accounts, oldest first (bounded page)
3. Per account: skip if in backoff, else credentials -> fetch -> upsert ->
   cursor -> record success. Any failure is recorded on that account and
   in the audit log; the pass moves on.
4. Return counts

No retries inside a pass: the next scheduled pass plus backoff is the retry.
"""
import asyncio
import hmac
import logging
from datetime import timedelta, timezone
from typing import List, Optional

from tether.core.errors import (
    AuthenticationError,
    ConfigurationError,
    CredentialMissing,
    LinkedAccountNotFound,
    ProviderRequestFailed,
)
from tether.models.integration import LinkedAccount, StoredCredential, SyncPassSummary
from tether.services.sync.audit import IntegrationAuditLog
from tether.services.sync.database import LinkedAccountRegistry, SyncCursorStore
from tether.services.sync.health import SyncHealthTracker
from tether.services.sync.persistence import ItemIngestor
from tether.services.sync.providers.base import ProviderClient, ProviderRegistry
from tether.services.sync.vault import TokenVault

logger = logging.getLogger(__name__)

REFRESH_WINDOW = timedelta(seconds=60)

SUCCESS = "success"
FAILED = "failed"
SKIPPED = "skipped"


def authenticate_scheduler(secret: Optional[str], bearer: Optional[str]) -> None:
    """
    Shared-secret check for scheduler invocations.

    Raises:
        ConfigurationError: no secret configured (every caller is rejected)
        AuthenticationError: bearer missing or wrong
    """
    if not secret:
        logger.error("❌ CRON_SECRET not configured, rejecting scheduled sync")
        raise ConfigurationError("CRON_SECRET not configured")
    if not bearer or not hmac.compare_digest(bearer.encode("utf-8"), secret.encode("utf-8")):
        logger.warning("Rejected scheduled sync call with an invalid bearer")
        raise AuthenticationError("Invalid scheduler bearer")


class SyncOrchestrator:

    def __init__(
        self,
        settings,
        providers: ProviderRegistry,
        registry: LinkedAccountRegistry,
        vault: TokenVault,
        health: SyncHealthTracker,
        ingestor: ItemIngestor,
        cursors: SyncCursorStore,
        audit: IntegrationAuditLog,
    ):
        self.settings = settings
        self.providers = providers
        self.registry = registry
        self.vault = vault
        self.health = health
        self.ingestor = ingestor
        self.cursors = cursors
        self.audit = audit

    # ========================================================================
    # AUTH
    # ========================================================================

    def authenticate(self, bearer: Optional[str]) -> None:
        authenticate_scheduler(self.settings.cron_secret, bearer)

    # ========================================================================
    # PASS
    # ========================================================================

    async def run_pass(self, bearer: Optional[str]) -> SyncPassSummary:
        self.authenticate(bearer)
        return await self.run_authenticated_pass()

    async def run_authenticated_pass(self) -> SyncPassSummary:
        """
        Run a pass for a caller that was already trusted (the worker).

        Raises:
            Whatever the account listing raises: a listing failure aborts the pass.
        """
        accounts = await self.registry.list_due(limit=self.settings.sync_list_limit)
        logger.info(f"🚀 Sync pass starting: {len(accounts)} linked accounts")

        semaphore = asyncio.Semaphore(self.settings.sync_concurrency)

        async def run_one(account: LinkedAccount) -> str:
            async with semaphore:
                return await self._attempt(account)

        # listing returns each account once, so no two attempts share an account
        outcomes = await asyncio.gather(*(run_one(a) for a in accounts))

        summary = SyncPassSummary(
            skipped_backoff=outcomes.count(SKIPPED),
            success=outcomes.count(SUCCESS),
            failed=outcomes.count(FAILED),
        )
        summary.attempted = summary.success + summary.failed

        logger.info("=" * 80)
        logger.info(
            f"✅ Sync pass complete: attempted={summary.attempted} "
            f"skipped_backoff={summary.skipped_backoff} success={summary.success} failed={summary.failed}"
        )
        logger.info("=" * 80)
        return summary

    async def _attempt(self, account: LinkedAccount) -> str:
        if not self.health.can_attempt(account):
            logger.debug(f"Account {account.id} in backoff until {account.next_attempt_at}")
            return SKIPPED
        try:
            await self.sync_account(account)
            return SUCCESS
        except Exception as e:
            await self._record_failure(account, e)
            return FAILED

    async def _record_failure(self, account: LinkedAccount, error: Exception) -> None:
        if not isinstance(error, (ProviderRequestFailed, CredentialMissing)):
            logger.exception(f"Sync failed for account {account.id}")
        try:
            await self.health.record_failure(account, str(error) or type(error).__name__)
        except Exception as e:
            logger.error(f"Could not record failure for account {account.id}: {e}")
        await self.audit.record(
            user_id=account.user_id,
            provider=account.provider,
            stage="sync",
            error=error,
            account_id=account.id,
        )

    # ========================================================================
    # ONE ACCOUNT
    # ========================================================================

    async def sync_account(self, account: LinkedAccount) -> int:
        """
        Sync one account and record success. Failures propagate to the caller.

        Returns:
            Number of items written
        """
        client = self.providers.get(account.provider)
        try:
            imported = await asyncio.wait_for(
                self._fetch_and_store(client, account),
                timeout=self.settings.sync_account_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderRequestFailed(
                None,
                f"sync timed out after {self.settings.sync_account_timeout_seconds}s",
                provider=account.provider,
            ) from e

        await self.health.record_success(account)
        logger.info(f"✅ {account.provider} account {account.id}: {imported} items")
        return imported

    async def _fetch_and_store(self, client: ProviderClient, account: LinkedAccount) -> int:
        credential = await self.resolve_credential(client, account)

        cursor = None
        if client.cursor_scope:
            cursor = await self.cursors.get(account.user_id, account.id, client.cursor_scope)

        page = await client.fetch_recent_activity(credential.access_token, cursor=cursor, account=account)
        imported = await self.ingestor.upsert(account.user_id, page.items, provider=account.provider, account_id=account.id)

        if client.cursor_scope and page.next_cursor and page.next_cursor != cursor:
            await self.cursors.put(account.user_id, account.id, client.cursor_scope, page.next_cursor)
        return imported

    async def resolve_credential(self, client: ProviderClient, account: LinkedAccount) -> StoredCredential:
        """Stored credential, refreshed first when it expires within a minute."""
        credential = await self.vault.get(account.id)
        if credential is None:
            raise CredentialMissing(f"No stored credential for account {account.id}")

        if not (client.supports_refresh and credential.refresh_token and credential.expires_at):
            return credential
        expires_at = credential.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at - self.health.clock() >= REFRESH_WINDOW:
            return credential

        logger.info(f"🔄 Refreshing {account.provider} token for account {account.id}")
        grant = await client.refresh_access_token(credential.refresh_token)
        refreshed = StoredCredential(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or credential.refresh_token,
            expires_at=grant.expires_at,
            scopes=credential.scopes,
        )
        await self.vault.put(
            account.id,
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token,
            expires_at=refreshed.expires_at,
            scopes=refreshed.scopes,
        )
        return refreshed

    # ========================================================================
    # MANUAL
    # ========================================================================

    async def sync_user_provider(self, user_id: str, provider: str) -> int:
        """
        Manual "sync now" for one user's accounts of one provider.

        Ignores backoff, but records each outcome like a scheduled attempt.
        Every account is attempted; the first failure is re-raised afterwards.

        Raises:
            UnsupportedProvider: unknown provider key
            LinkedAccountNotFound: the user has no linked account for it
        """
        self.providers.get(provider)
        accounts: List[LinkedAccount] = await self.registry.list_due(
            provider=provider,
            user_id=user_id,
            limit=self.settings.sync_list_limit,
        )
        if not accounts:
            raise LinkedAccountNotFound(f"No linked {provider} account")

        imported = 0
        first_error: Optional[Exception] = None
        for account in accounts:
            try:
                imported += await self.sync_account(account)
            except Exception as e:
                await self._record_failure(account, e)
                first_error = first_error or e

        if first_error is not None:
            raise first_error
        return imported
