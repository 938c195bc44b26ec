"""
Sync Error Taxonomy

Every failure the integration subsystem raises on purpose derives from
SyncError. The orchestrator catches these per account; the HTTP layer maps
them to status codes in tether.middleware.error_handler.
"""
from typing import Optional


class SyncError(Exception):
    """Base class for integration sync failures."""


class ConfigurationError(SyncError):
    """A required secret or key is missing or malformed. Never retried."""


class AuthenticationError(SyncError):
    """Invalid bearer or session. The caller must re-authenticate."""


class OAuthStateMismatch(SyncError):
    """Callback state missing, expired, replayed, or not ours (possible CSRF)."""


class OAuthExchangeFailed(SyncError):
    """Authorization code exchange or token refresh was rejected."""


class CredentialMissing(SyncError):
    """No stored credential for a linked account."""


class CredentialInvalid(SyncError):
    """A stored credential could not be decrypted."""


class InvalidFormat(CredentialInvalid):
    """Encrypted token is malformed or carries an unknown version tag."""


class AuthenticationFailed(CredentialInvalid):
    """Encrypted token failed tag verification (tampered or wrong key)."""


class ProviderRequestFailed(SyncError):
    """A provider API call failed. Retried by the next scheduled pass."""

    def __init__(self, status: Optional[int], body: str, provider: Optional[str] = None):
        self.status = status
        self.body = body[:2000] if body else ""
        self.provider = provider
        prefix = f"[{provider}] " if provider else ""
        super().__init__(f"{prefix}request failed (status={status}): {self.body[:200]}")


class IngestionWriteFailed(SyncError):
    """Writing external items to storage failed."""


class UnsupportedProvider(SyncError):
    """No provider client registered under this key."""


class LinkedAccountNotFound(SyncError):
    """The user has no linked account for the requested provider."""
