"""
Encryption for OAuth tokens at rest.

AES-256-GCM with a fresh 96-bit nonce per call. Token format:

    v1.<nonce>.<ciphertext>.<tag>

Each segment is unpadded base64url, so the token is safe in URLs, files
and text columns, and the "." delimiter can never appear inside a segment.
"""
import base64
import binascii
import logging
import os
import re
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tether.core.errors import AuthenticationFailed, ConfigurationError, InvalidFormat

logger = logging.getLogger(__name__)

VERSION = "v1"
DELIMITER = "."
KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]*$")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    if not _SEGMENT_RE.match(data):
        raise InvalidFormat("Segment is not base64url")
    pad = "=" * (-len(data) % 4)
    try:
        decoded = base64.urlsafe_b64decode(data + pad)
    except (binascii.Error, ValueError) as e:
        raise InvalidFormat("Segment is not base64url") from e
    # Unused trailing bits would otherwise let two strings decode to the same bytes
    if b64url_encode(decoded) != data:
        raise InvalidFormat("Segment is not canonical base64url")
    return decoded


def load_key(raw: str | None) -> bytes:
    """Decode the configured key, failing with ConfigurationError."""
    if not raw:
        raise ConfigurationError(
            "APP_ENCRYPTION_KEY not configured. "
            'Generate with: python -c "import os, base64; print(base64.b64encode(os.urandom(32)).decode())"'
        )
    try:
        key = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        try:
            key = b64url_decode(raw.rstrip("="))
        except InvalidFormat as e:
            raise ConfigurationError("APP_ENCRYPTION_KEY must be base64 encoded") from e
    if len(key) != KEY_BYTES:
        raise ConfigurationError("APP_ENCRYPTION_KEY must be base64-encoded 32 bytes")
    return key


class SecretCipher:
    """Authenticated symmetric encryption for credentials."""

    def __init__(self, key: bytes):
        if len(key) != KEY_BYTES:
            raise ConfigurationError("Encryption key must be 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_settings(cls, settings) -> "SecretCipher":
        return cls(load_key(settings.app_encryption_key))

    def encrypt(self, plaintext: Union[str, bytes]) -> str:
        data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, data, None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return DELIMITER.join(
            [VERSION, b64url_encode(nonce), b64url_encode(ciphertext), b64url_encode(tag)]
        )

    def decrypt_bytes(self, token: str) -> bytes:
        if not isinstance(token, str):
            raise InvalidFormat("Encrypted token must be a string")

        parts = token.split(DELIMITER)
        if len(parts) != 4:
            raise InvalidFormat("Encrypted token must have 4 segments")

        version, nonce_b64, ct_b64, tag_b64 = parts
        if version != VERSION:
            raise InvalidFormat(f"Unknown encrypted token version: {version[:8]!r}")
        if not nonce_b64 or not tag_b64:
            raise InvalidFormat("Encrypted token has empty segments")

        nonce = b64url_decode(nonce_b64)
        ciphertext = b64url_decode(ct_b64)
        tag = b64url_decode(tag_b64)
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise InvalidFormat("Encrypted token has wrong nonce or tag length")

        try:
            return self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise AuthenticationFailed("Encrypted token failed authentication") from e

    def decrypt(self, token: str) -> str:
        data = self.decrypt_bytes(token)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidFormat("Decrypted token is not UTF-8 text") from e
