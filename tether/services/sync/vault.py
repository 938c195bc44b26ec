"""
Token Vault
Encrypted OAuth credentials keyed by linked account (table: integration_account_tokens)

Plaintext never reaches storage: every secret is encrypted independently
with a fresh nonce on every write. Storage errors propagate to the caller.
"""
import logging
from datetime import datetime
from typing import List, Optional

from supabase import Client

from tether.core.encryption import SecretCipher
from tether.core.errors import CredentialInvalid
from tether.models.integration import StoredCredential

logger = logging.getLogger(__name__)

TOKENS_TABLE = "integration_account_tokens"


class TokenVault:

    def __init__(self, supabase: Client, cipher: SecretCipher):
        self.supabase = supabase
        self.cipher = cipher

    async def put(
        self,
        account_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        scopes: Optional[List[str]] = None,
    ) -> None:
        """Replace the credential for an account (no history kept)."""
        payload = {
            "integration_account_id": account_id,
            "access_token_enc": self.cipher.encrypt(access_token),
            "refresh_token_enc": self.cipher.encrypt(refresh_token) if refresh_token else None,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "scopes": list(scopes or []),
        }
        self.supabase.table(TOKENS_TABLE).upsert(payload, on_conflict="integration_account_id").execute()
        logger.info(f"Stored credential for account {account_id}")

    async def get(self, account_id: str) -> Optional[StoredCredential]:
        result = self.supabase.table(TOKENS_TABLE)\
            .select("access_token_enc,refresh_token_enc,expires_at,scopes")\
            .eq("integration_account_id", account_id)\
            .maybe_single()\
            .execute()
        if not result or not result.data:
            return None

        row = result.data
        try:
            access_token = self.cipher.decrypt(str(row["access_token_enc"]))
            refresh_token = self.cipher.decrypt(str(row["refresh_token_enc"])) if row.get("refresh_token_enc") else None
        except CredentialInvalid:
            logger.error(f"Stored credential for account {account_id} could not be decrypted")
            raise

        scopes = row.get("scopes")
        return StoredCredential(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=row.get("expires_at"),
            scopes=scopes if isinstance(scopes, list) else [],
        )

    async def delete(self, account_id: str) -> None:
        self.supabase.table(TOKENS_TABLE).delete().eq("integration_account_id", account_id).execute()
        logger.info(f"Deleted credential for account {account_id}")
