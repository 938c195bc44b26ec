"""
OAuth Handshake
Single-use server-side record of an in-flight connect flow

FLOW:
- begin:    state is generated, the handshake (user, provider, return path,
            PKCE verifier) is saved under that state with a TTL, and the
            browser gets an HMAC-signed cookie carrying only the state
- callback: the cookie signature and the returned state are checked, then the
            handshake is TAKEN (read + delete in one step). A second callback
            with the same state finds nothing.

The verifier never leaves the server; the browser only sees the state and
the S256 challenge.
"""
import hashlib
import hmac
import json
import logging
import secrets
import threading
import time
from typing import Dict, Optional, Tuple

import redis

from tether.core.encryption import b64url_decode, b64url_encode
from tether.core.errors import ConfigurationError, InvalidFormat, OAuthStateMismatch
from tether.models.integration import OAuthHandshake

logger = logging.getLogger(__name__)

HANDSHAKE_COOKIE = "tether_oauth"
KEY_PREFIX = "oauth:handshake:"


# ============================================================================
# PKCE
# ============================================================================

def generate_state() -> str:
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    """43 char verifier (32 random bytes, base64url without padding)."""
    return b64url_encode(secrets.token_bytes(32))


def code_challenge_s256(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return b64url_encode(digest)


def safe_return_to(value: Optional[str], prefix: str = "/app") -> str:
    """
    Only internal paths under the app prefix are valid post-auth destinations.

    Examples:
        >>> safe_return_to("/app/settings")
        '/app/settings'
        >>> safe_return_to("https://evil.example/app")
        '/app'
        >>> safe_return_to("//evil.example")
        '/app'
    """
    if not value or not value.startswith(prefix) or value.startswith("//") or "\\" in value:
        return prefix
    return value


# ============================================================================
# SIGNED COOKIE
# ============================================================================

def _sign(secret: str, payload: bytes) -> str:
    return b64url_encode(hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest())


def sign_state_cookie(secret: Optional[str], state: str, provider: str) -> str:
    if not secret:
        raise ConfigurationError("OAUTH_COOKIE_SECRET is not configured")
    payload = json.dumps({"s": state, "p": provider, "iat": int(time.time())}, separators=(",", ":")).encode("utf-8")
    return f"{b64url_encode(payload)}.{_sign(secret, payload)}"


def verify_state_cookie(
    secret: Optional[str],
    cookie_value: Optional[str],
    returned_state: Optional[str],
    provider: str,
    max_age_seconds: int,
) -> str:
    """
    Check the browser's cookie against the state the provider sent back.

    Returns:
        The verified state

    Raises:
        OAuthStateMismatch: missing, forged, expired, or for another provider
    """
    if not secret:
        raise ConfigurationError("OAUTH_COOKIE_SECRET is not configured")
    if not cookie_value or not returned_state:
        raise OAuthStateMismatch("Missing OAuth state")

    try:
        payload_b64, sig = cookie_value.split(".", 1)
        payload = b64url_decode(payload_b64)
    except (ValueError, InvalidFormat) as e:
        raise OAuthStateMismatch("Malformed OAuth state cookie") from e

    if not hmac.compare_digest(_sign(secret, payload), sig):
        raise OAuthStateMismatch("Invalid OAuth state signature")

    try:
        data = json.loads(payload.decode("utf-8"))
        state = str(data["s"])
        cookie_provider = str(data["p"])
        issued_at = int(data["iat"])
    except Exception as e:
        raise OAuthStateMismatch("Malformed OAuth state payload") from e

    if not hmac.compare_digest(state, returned_state):
        raise OAuthStateMismatch("OAuth state mismatch")
    if cookie_provider != provider:
        raise OAuthStateMismatch("OAuth state issued for another provider")
    if time.time() - issued_at > max_age_seconds:
        raise OAuthStateMismatch("OAuth state expired")

    return state


# ============================================================================
# STORES
# ============================================================================

class HandshakeStore:
    """Short-lived key-value store with atomic take-and-delete."""

    def put(self, handshake: OAuthHandshake, ttl_seconds: int) -> None:
        raise NotImplementedError

    def take(self, state: str) -> Optional[OAuthHandshake]:
        raise NotImplementedError


class MemoryHandshakeStore(HandshakeStore):
    """Process-local store for development and tests (single worker only)."""

    def __init__(self, clock=time.monotonic):
        self._items: Dict[str, Tuple[float, OAuthHandshake]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def put(self, handshake: OAuthHandshake, ttl_seconds: int) -> None:
        with self._lock:
            self._items[handshake.state] = (self._clock() + ttl_seconds, handshake)

    def take(self, state: str) -> Optional[OAuthHandshake]:
        with self._lock:
            entry = self._items.pop(state, None)
        if entry is None:
            return None
        expires_at, handshake = entry
        if self._clock() > expires_at:
            return None
        return handshake


class RedisHandshakeStore(HandshakeStore):
    """Redis-backed store; GETDEL makes the take atomic across workers."""

    def __init__(self, client: redis.Redis):
        self.client = client

    def put(self, handshake: OAuthHandshake, ttl_seconds: int) -> None:
        self.client.set(KEY_PREFIX + handshake.state, handshake.model_dump_json(), ex=ttl_seconds)

    def take(self, state: str) -> Optional[OAuthHandshake]:
        raw = self.client.getdel(KEY_PREFIX + state)
        if raw is None:
            return None
        return OAuthHandshake.model_validate_json(raw)
