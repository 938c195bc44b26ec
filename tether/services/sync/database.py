"""
Database helpers for the integration sync subsystem
Linked account registry and sync cursors (Supabase tables)

Tables:
- integration_accounts: one row per user <-> provider connection, with health fields
- sync_cursors: one row per (user, linked account, scope)
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from tether.models.integration import AccountStatus, LinkIntent, LinkedAccount

logger = logging.getLogger(__name__)

ACCOUNTS_TABLE = "integration_accounts"
CURSORS_TABLE = "sync_cursors"

# Only these columns may be patched through update_health / update_account
HEALTH_FIELDS = {"sync_error_count", "next_attempt_at", "last_synced_at", "last_sync_status", "last_error"}
ACCOUNT_FIELDS = HEALTH_FIELDS | {"display_name", "meta", "status"}


def _serialize(patch: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in patch.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, AccountStatus):
            value = value.value
        out[key] = value
    return out


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# LINKED ACCOUNT REGISTRY
# ============================================================================

class LinkedAccountRegistry:
    """
    Durable record of linked accounts.

    No uniqueness beyond the row id: a user may link several accounts of the
    same provider. Re-authorization vs. duplication is the caller's choice
    (LinkIntent), never a silent dedupe here.
    """

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def create(
        self,
        user_id: str,
        provider: str,
        external_account_id: str,
        display_name: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        status: AccountStatus = AccountStatus.LINKED,
    ) -> LinkedAccount:
        payload = {
            "user_id": user_id,
            "provider": provider,
            "external_account_id": external_account_id,
            "display_name": display_name,
            "meta": meta or {},
            "status": status.value,
            "sync_error_count": 0,
        }
        result = self.supabase.table(ACCOUNTS_TABLE).insert(payload).execute()
        row = result.data[0]
        logger.info(f"Created {status.value} {provider} account {row['id']} for user {user_id}")
        return LinkedAccount(**row)

    async def get(self, account_id: str) -> Optional[LinkedAccount]:
        result = self.supabase.table(ACCOUNTS_TABLE)\
            .select("*")\
            .eq("id", account_id)\
            .maybe_single()\
            .execute()
        if not result or not result.data:
            return None
        return LinkedAccount(**result.data)

    async def find(
        self,
        user_id: str,
        provider: str,
        external_account_id: str
    ) -> Optional[LinkedAccount]:
        """Existing connection for the same external account, if any."""
        result = self.supabase.table(ACCOUNTS_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("provider", provider)\
            .eq("external_account_id", external_account_id)\
            .order("created_at")\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return LinkedAccount(**result.data[0])

    async def list_due(
        self,
        now_cutoff: Optional[datetime] = None,
        provider: Optional[str] = None,
        limit: int = 5000,
        user_id: Optional[str] = None,
        status: Optional[AccountStatus] = AccountStatus.LINKED,
    ) -> List[LinkedAccount]:
        """
        List accounts oldest first.

        Args:
            now_cutoff: only accounts whose next_attempt_at is unset or <= cutoff
            provider: only this provider
            limit: page size
            user_id: only this user's accounts
            status: only accounts in this state (None = any)
        """
        query = self.supabase.table(ACCOUNTS_TABLE).select("*")
        if provider:
            query = query.eq("provider", provider)
        if user_id:
            query = query.eq("user_id", user_id)
        if status is not None:
            query = query.eq("status", status.value)
        if now_cutoff is not None:
            cutoff = now_cutoff.isoformat()
            query = query.or_(f"next_attempt_at.is.null,next_attempt_at.lte.{cutoff}")

        result = query.order("created_at").limit(limit).execute()
        return [LinkedAccount(**row) for row in (result.data or [])]

    async def update_health(self, account_id: str, patch: Dict[str, Any]) -> None:
        unknown = set(patch) - HEALTH_FIELDS
        if unknown:
            raise ValueError(f"Not a health field: {sorted(unknown)}")
        await self._update(account_id, patch)

    async def update_account(self, account_id: str, patch: Dict[str, Any]) -> None:
        unknown = set(patch) - ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Not an updatable field: {sorted(unknown)}")
        await self._update(account_id, patch)

    async def delete_pending(self, account_id: str) -> None:
        """Remove a half-linked row. Linked rows are never deleted here."""
        self.supabase.table(ACCOUNTS_TABLE)\
            .delete()\
            .eq("id", account_id)\
            .eq("status", AccountStatus.PENDING.value)\
            .execute()
        logger.info(f"Rolled back pending account {account_id}")

    async def _update(self, account_id: str, patch: Dict[str, Any]) -> None:
        payload = _serialize(patch)
        payload["updated_at"] = _utcnow_iso()
        self.supabase.table(ACCOUNTS_TABLE).update(payload).eq("id", account_id).execute()


# ============================================================================
# SYNC CURSORS
# ============================================================================

class SyncCursorStore:
    """Opaque per-scope watermarks. A missing row means "most recent window"."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def get(self, user_id: str, account_id: str, scope: str) -> Optional[str]:
        result = self.supabase.table(CURSORS_TABLE)\
            .select("cursor")\
            .eq("user_id", user_id)\
            .eq("integration_account_id", account_id)\
            .eq("scope", scope)\
            .maybe_single()\
            .execute()
        if not result or not result.data:
            return None
        return result.data.get("cursor")

    async def put(self, user_id: str, account_id: str, scope: str, cursor: Optional[str]) -> None:
        self.supabase.table(CURSORS_TABLE).upsert(
            {
                "user_id": user_id,
                "integration_account_id": account_id,
                "scope": scope,
                "cursor": cursor,
                "updated_at": _utcnow_iso(),
            },
            on_conflict="user_id,integration_account_id,scope"
        ).execute()
        logger.debug(f"Saved {scope} cursor for account {account_id}")


async def link_account(
    registry: LinkedAccountRegistry,
    user_id: str,
    provider: str,
    external_account_id: str,
    display_name: Optional[str],
    meta: Dict[str, Any],
    intent: LinkIntent,
) -> tuple[LinkedAccount, bool]:
    """
    Resolve the row an OAuth completion should write to.

    Returns (account, created). New rows start out PENDING; an existing row
    is returned as-is so the caller can write credentials before touching it.
    """
    if intent == LinkIntent.REAUTHORIZE:
        existing = await registry.find(user_id, provider, external_account_id)
        if existing:
            return existing, False

    account = await registry.create(
        user_id=user_id,
        provider=provider,
        external_account_id=external_account_id,
        display_name=display_name,
        meta=meta,
        status=AccountStatus.PENDING,
    )
    return account, True
