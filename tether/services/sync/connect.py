"""
Connect Service
OAuth connect/callback flow for linking a provider account

States: Unlinked -> AuthorizationRequested -> CallbackReceived -> Linked | Failed

Linking writes two stores (registry row + vault credential) that share no
transaction. Ordering:
- new account:      insert PENDING -> vault.put -> promote to LINKED
                    (vault failure deletes the pending row)
- existing account: vault.put -> update row
                    (vault failure leaves the row untouched)
"""
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from tether.core.errors import OAuthExchangeFailed, OAuthStateMismatch, SyncError
from tether.models.integration import AccountStatus, LinkedAccount, LinkIntent, OAuthGrant, OAuthHandshake
from tether.services.sync.audit import IntegrationAuditLog
from tether.services.sync.database import LinkedAccountRegistry, link_account
from tether.services.sync.handshake import (
    HandshakeStore,
    code_challenge_s256,
    generate_code_verifier,
    generate_state,
    safe_return_to,
    sign_state_cookie,
    verify_state_cookie,
)
from tether.services.sync.providers.base import ProviderRegistry
from tether.services.sync.vault import TokenVault

logger = logging.getLogger(__name__)


@dataclass
class ConnectStart:
    auth_url: str
    cookie_value: str


def with_query(path: str, **params: str) -> str:
    """
    Examples:
        >>> with_query("/app/settings", slack="connected")
        '/app/settings?slack=connected'
        >>> with_query("/app?tab=1", slack="error")
        '/app?tab=1&slack=error'
    """
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{urlencode(params)}"


class ConnectService:

    def __init__(
        self,
        settings,
        providers: ProviderRegistry,
        registry: LinkedAccountRegistry,
        vault: TokenVault,
        handshakes: HandshakeStore,
        audit: IntegrationAuditLog,
    ):
        self.settings = settings
        self.providers = providers
        self.registry = registry
        self.vault = vault
        self.handshakes = handshakes
        self.audit = audit

    def redirect_uri(self, provider: str) -> str:
        return f"{self.settings.site_url.rstrip('/')}/integrations/{provider}/callback"

    # ========================================================================
    # BEGIN
    # ========================================================================

    def begin_connect(self, user_id: str, provider: str, return_to: Optional[str]) -> ConnectStart:
        """
        Start a connect flow.

        Raises:
            UnsupportedProvider: unknown provider key
            ConfigurationError: provider client id or cookie secret missing
        """
        client = self.providers.get(provider)

        state = generate_state()
        verifier = generate_code_verifier() if client.uses_pkce else None
        challenge = code_challenge_s256(verifier) if verifier else None

        auth_url = client.build_authorization_url(self.redirect_uri(provider), state, code_challenge=challenge)
        cookie_value = sign_state_cookie(self.settings.oauth_cookie_secret, state, provider)

        self.handshakes.put(
            OAuthHandshake(
                state=state,
                provider=provider,
                user_id=user_id,
                return_to=safe_return_to(return_to, self.settings.return_to_prefix),
                code_verifier=verifier,
            ),
            ttl_seconds=self.settings.oauth_handshake_ttl_seconds,
        )

        logger.info(f"🔗 {provider} connect started for user {user_id}")
        return ConnectStart(auth_url=auth_url, cookie_value=cookie_value)

    # ========================================================================
    # CALLBACK
    # ========================================================================

    def _take_handshake(
        self,
        provider: str,
        state: Optional[str],
        cookie_value: Optional[str],
    ) -> OAuthHandshake:
        verified = verify_state_cookie(
            self.settings.oauth_cookie_secret,
            cookie_value,
            state,
            provider,
            max_age_seconds=self.settings.oauth_handshake_ttl_seconds,
        )
        handshake = self.handshakes.take(verified)
        if handshake is None:
            raise OAuthStateMismatch("OAuth state unknown, expired or already used")
        if handshake.provider != provider:
            raise OAuthStateMismatch("OAuth state issued for another provider")
        return handshake

    async def complete_connect(
        self,
        provider: str,
        code: Optional[str],
        state: Optional[str],
        cookie_value: Optional[str],
        error: Optional[str] = None,
    ) -> str:
        """
        Finish a connect flow. Never raises: every outcome is a redirect path.

        Returns:
            return path with ?<provider>=connected, or ?<provider>=error
        """
        fallback = self.settings.return_to_prefix
        handshake: Optional[OAuthHandshake] = None

        try:
            # Taken before the error and code checks so a denied consent still burns the state
            handshake = self._take_handshake(provider, state, cookie_value)

            if error:
                raise OAuthExchangeFailed(f"Provider returned error: {error}")
            if not code:
                raise OAuthExchangeFailed("Missing authorization code")

            client = self.providers.get(provider)
            grant = await client.exchange_code(code, self.redirect_uri(provider), code_verifier=handshake.code_verifier)
            if grant.identity is None:
                raise OAuthExchangeFailed(f"{provider} exchange returned no account identity")

            account = await self.link(handshake.user_id, provider, grant, LinkIntent.REAUTHORIZE)
            logger.info(f"✅ {provider} account {account.id} linked for user {handshake.user_id}")
            return with_query(handshake.return_to, **{provider: "connected"})

        except Exception as e:
            stage = "oauth_state" if isinstance(e, OAuthStateMismatch) else "oauth_callback"
            if not isinstance(e, SyncError):
                logger.exception(f"Unexpected error completing {provider} connect")
            await self.audit.record(
                user_id=handshake.user_id if handshake else "unknown",
                provider=provider,
                stage=stage,
                error=e,
            )
            return_to = handshake.return_to if handshake else fallback
            return with_query(return_to, **{provider: "error"})

    async def link(self, user_id: str, provider: str, grant: OAuthGrant, intent: LinkIntent) -> LinkedAccount:
        """Persist identity and credentials as one logical unit."""
        identity = grant.identity
        account, created = await link_account(
            self.registry,
            user_id=user_id,
            provider=provider,
            external_account_id=identity.external_account_id,
            display_name=identity.display_name,
            meta=identity.meta,
            intent=intent,
        )

        patch = {"status": AccountStatus.LINKED}
        if not created:
            patch.update({
                "display_name": identity.display_name or account.display_name,
                "meta": {**account.meta, **identity.meta},
                "last_error": None,
            })

        try:
            await self.vault.put(
                account.id,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_at=grant.expires_at,
                scopes=grant.scopes,
            )
            await self.registry.update_account(account.id, patch)
        except Exception:
            if created:
                await self._discard_new_account(account.id)
            raise
        return account.model_copy(update=patch)

    async def _discard_new_account(self, account_id: str) -> None:
        """Remove the credential and the pending row of a link that did not finish."""
        try:
            await self.vault.delete(account_id)
        finally:
            await self.registry.delete_pending(account_id)
