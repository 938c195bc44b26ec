"""
Integration Domain Models
Rows owned by the sync subsystem and the shapes passed between its parts
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Provider(str, Enum):
    """Providers with a registered client. Storage keeps the plain string."""
    SLACK = "slack"
    NOTION = "notion"
    ASANA = "asana"


class AccountStatus(str, Enum):
    PENDING = "pending"
    LINKED = "linked"


class LinkIntent(str, Enum):
    """What the OAuth callback wants when the same external account is linked again."""
    REAUTHORIZE = "reauthorize"  # update the existing connection
    NEW = "new"                  # always create another connection


class LinkedAccount(BaseModel):
    """
    One user <-> provider connection (table: integration_accounts).

    Health fields live on the row itself:
    - sync_error_count: consecutive failures
    - next_attempt_at: earliest time the scheduler may try again (None = never synced)
    - last_synced_at: last successful sync
    """
    id: str
    user_id: str
    provider: str
    external_account_id: str
    display_name: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    status: AccountStatus = AccountStatus.LINKED
    last_error: Optional[str] = None
    sync_error_count: int = 0
    next_attempt_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StoredCredential(BaseModel):
    """Decrypted credential. Only held in memory for one outbound request."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)


class ProviderIdentity(BaseModel):
    """Who the provider says we connected to."""
    external_account_id: str
    display_name: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class OAuthGrant(BaseModel):
    """Result of a code exchange or a token refresh."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)
    identity: Optional[ProviderIdentity] = None


class ProviderItem(BaseModel):
    """Minimal common shape every provider maps its activity into."""
    item_type: str
    external_id: str
    url: str
    title: Optional[str] = None
    summary: Optional[str] = None
    status: Optional[str] = None
    due_at: Optional[datetime] = None
    author: Optional[str] = None
    channel: Optional[str] = None
    occurred_at: Optional[datetime] = None
    raw: Optional[Dict[str, Any]] = None


class ActivityPage(BaseModel):
    """Items from one fetch, plus the cursor to store for the next one."""
    items: List[ProviderItem] = Field(default_factory=list)
    next_cursor: Optional[str] = None


class ExternalItem(BaseModel):
    """Normalized ingestion row (table: external_items)."""
    user_id: str
    integration_account_id: Optional[str] = None
    provider: str
    type: str
    external_id: str
    external_url: str
    title: Optional[str] = None
    summary: Optional[str] = None
    status: Optional[str] = None
    due_at: Optional[datetime] = None
    author: Optional[str] = None
    channel: Optional[str] = None
    occurred_at: Optional[datetime] = None
    raw: Optional[Dict[str, Any]] = None
    synced_at: datetime
    deleted_at: Optional[datetime] = None

    @property
    def idempotency_key(self) -> tuple:
        return (self.user_id, self.provider, self.type, self.external_id)


class SyncPassSummary(BaseModel):
    """Counts from one orchestrator pass. attempted == success + failed."""
    attempted: int = 0
    skipped_backoff: int = 0
    success: int = 0
    failed: int = 0


class OAuthHandshake(BaseModel):
    """Server-side half of an in-flight connect flow."""
    state: str
    provider: str
    user_id: str
    return_to: str
    code_verifier: Optional[str] = None
