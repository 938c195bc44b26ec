"""
Provider client interface

Everything provider specific (endpoints, scopes, payload shapes) lives behind
ProviderClient. The orchestrator and the connect flow only see this
interface, so adding a provider means one new subclass plus one registry entry.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Type

import httpx

from tether.core.errors import (
    ConfigurationError,
    OAuthExchangeFailed,
    ProviderRequestFailed,
    UnsupportedProvider,
)
from tether.models.integration import ActivityPage, LinkedAccount, OAuthGrant

logger = logging.getLogger(__name__)


class ProviderClient(ABC):
    """One OAuth provider. Subclasses set the class attributes below."""

    name: str = ""
    scopes: List[str] = []
    cursor_scope: Optional[str] = None   # None = always fetch the most recent window
    uses_pkce: bool = False
    supports_refresh: bool = False

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.http = http_client
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    def _require_credentials(self) -> tuple[str, str]:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError(f"{self.name.upper()}_CLIENT_ID / {self.name.upper()}_CLIENT_SECRET not configured")
        return self.client_id, self.client_secret

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    @abstractmethod
    def build_authorization_url(self, redirect_uri: str, state: str, code_challenge: Optional[str] = None) -> str:
        """Provider consent URL. Carries the state (and challenge), never a verifier."""

    @abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> OAuthGrant:
        """Trade an authorization code for tokens plus the provider identity."""

    async def refresh_access_token(self, refresh_token: str) -> OAuthGrant:
        raise OAuthExchangeFailed(f"{self.name} does not issue refresh tokens; reconnect instead")

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_recent_activity(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        account: Optional[LinkedAccount] = None,
    ) -> ActivityPage:
        """Recent items mapped to ProviderItem, newest first."""

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _request_json(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """
        Send a request and decode a JSON object body.

        Raises:
            ProviderRequestFailed: transport error, timeout, non-2xx, or a body
                that is not a JSON object
        """
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"❌ {self.name} request timed out: {method} {_path(url)}")
            raise ProviderRequestFailed(None, f"timeout: {e}", provider=self.name) from e
        except httpx.HTTPError as e:
            logger.error(f"❌ {self.name} transport error: {method} {_path(url)}: {e}")
            raise ProviderRequestFailed(None, str(e), provider=self.name) from e

        if not response.is_success:
            logger.error(f"❌ {self.name} API error: {response.status_code} - {response.text[:500]}")
            raise ProviderRequestFailed(response.status_code, response.text, provider=self.name)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderRequestFailed(response.status_code, response.text, provider=self.name) from e
        if not isinstance(data, dict):
            raise ProviderRequestFailed(response.status_code, response.text, provider=self.name)
        return data

    async def _token_request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """Same as _request_json, but failures surface as OAuthExchangeFailed."""
        try:
            return await self._request_json(method, url, **kwargs)
        except ProviderRequestFailed as e:
            raise OAuthExchangeFailed(f"{self.name} token endpoint failed (status={e.status})") from e


def _path(url: str) -> str:
    # query strings may carry codes or tokens
    return url.split("?", 1)[0]


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


# ============================================================================
# REGISTRY
# ============================================================================

class ProviderRegistry:
    """Provider key -> client, resolved once at startup."""

    def __init__(self, clients: Iterable[ProviderClient]):
        self._clients: Dict[str, ProviderClient] = {c.name: c for c in clients}

    def get(self, provider: str) -> ProviderClient:
        client = self._clients.get(provider)
        if client is None:
            raise UnsupportedProvider(f"Unsupported provider: {provider}")
        return client

    def names(self) -> List[str]:
        return sorted(self._clients)


def build_provider_registry(settings, http_client: httpx.AsyncClient) -> ProviderRegistry:
    from tether.services.sync.providers.asana import AsanaClient
    from tether.services.sync.providers.notion import NotionClient
    from tether.services.sync.providers.slack import SlackClient

    classes: List[Type[ProviderClient]] = [SlackClient, NotionClient, AsanaClient]
    clients = []
    for cls in classes:
        client_id, client_secret = settings.provider_credentials(cls.name)
        clients.append(cls(
            http_client,
            client_id=client_id,
            client_secret=client_secret,
            timeout=settings.http_timeout_seconds,
        ))
    return ProviderRegistry(clients)
