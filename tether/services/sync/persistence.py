"""
External item persistence
Normalizes provider items and upserts them into external_items

Idempotent by (user_id, provider, type, external_id): a repeated item
overwrites its row, never appends one. Does not touch account health.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from supabase import Client

from tether.core.errors import IngestionWriteFailed
from tether.models.integration import ExternalItem, ProviderItem
from tether.services.sync.canonical import ON_CONFLICT

logger = logging.getLogger(__name__)

ITEMS_TABLE = "external_items"

MAX_TITLE = 200
MAX_SUMMARY = 4000


def normalize_item(
    user_id: str,
    provider: str,
    item: ProviderItem,
    synced_at: datetime,
    account_id: Optional[str] = None,
) -> ExternalItem:
    return ExternalItem(
        user_id=user_id,
        integration_account_id=account_id,
        provider=provider,
        type=item.item_type,
        external_id=item.external_id,
        external_url=item.url,
        title=item.title[:MAX_TITLE] if item.title else None,
        summary=item.summary[:MAX_SUMMARY] if item.summary else None,
        status=item.status,
        due_at=item.due_at,
        author=item.author,
        channel=item.channel,
        occurred_at=item.occurred_at,
        raw=item.raw,
        synced_at=synced_at,
    )


class ItemIngestor:

    def __init__(self, supabase: Client, clock: Optional[Callable[[], datetime]] = None):
        self.supabase = supabase
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def upsert(
        self,
        user_id: str,
        items: Iterable[ProviderItem],
        provider: str,
        account_id: Optional[str] = None,
    ) -> int:
        """
        Write a batch of provider items.

        Returns:
            Number of distinct rows written (0 for an empty batch, without a write)

        Raises:
            IngestionWriteFailed: storage rejected the batch
        """
        synced_at = self.clock()

        # Postgres rejects one statement touching the same conflict key twice,
        # so duplicates inside a batch collapse here (last one wins).
        rows: Dict[tuple, ExternalItem] = {}
        for item in items:
            normalized = normalize_item(user_id, provider, item, synced_at, account_id)
            rows[normalized.idempotency_key] = normalized

        if not rows:
            logger.debug(f"No {provider} items for user {user_id}, nothing to write")
            return 0

        payload: List[dict] = [row.model_dump(mode="json") for row in rows.values()]

        try:
            self.supabase.table(ITEMS_TABLE).upsert(payload, on_conflict=ON_CONFLICT).execute()
        except Exception as e:
            logger.error(f"Failed to upsert {len(payload)} {provider} items for user {user_id}: {e}")
            raise IngestionWriteFailed(f"external_items upsert failed: {e}") from e

        logger.info(f"✅ Upserted {len(payload)} {provider} items for user {user_id}")
        return len(payload)
