"""
Sync Health Tracker
Decides whether an account is due, and moves its backoff after each attempt

Backoff after n consecutive failures:

    backoff(n) = min(base * 2^(n-1), cap)

With the defaults (2 min base, 60 min cap): 2, 4, 8, 16, 32, 60, 60, ...
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from tether.models.integration import LinkedAccount
from tether.services.sync.database import LinkedAccountRegistry

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_backoff(failures: int, base: timedelta, cap: timedelta) -> timedelta:
    if failures <= 0:
        return timedelta(0)
    # keeps timedelta from overflowing; 2^20 * base is far past any cap
    exponent = min(failures - 1, 20)
    return min(base * (2 ** exponent), cap)


class SyncHealthTracker:

    def __init__(
        self,
        registry: LinkedAccountRegistry,
        base: timedelta,
        cap: timedelta,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.registry = registry
        self.base = base
        self.cap = cap
        self.clock = clock or utcnow

    @classmethod
    def from_settings(cls, registry: LinkedAccountRegistry, settings, clock=None) -> "SyncHealthTracker":
        return cls(
            registry,
            base=timedelta(minutes=settings.sync_backoff_base_minutes),
            cap=timedelta(minutes=settings.sync_backoff_max_minutes),
            clock=clock,
        )

    def can_attempt(self, account: LinkedAccount) -> bool:
        """True iff the account was never scheduled or its backoff has elapsed."""
        if account.next_attempt_at is None:
            return True
        next_attempt = account.next_attempt_at
        if next_attempt.tzinfo is None:
            next_attempt = next_attempt.replace(tzinfo=timezone.utc)
        return self.clock() >= next_attempt

    async def record_success(self, account: LinkedAccount) -> LinkedAccount:
        now = self.clock()
        patch = {
            "sync_error_count": 0,
            "next_attempt_at": now,
            "last_synced_at": now,
            "last_sync_status": "ok",
            "last_error": None,
        }
        await self.registry.update_health(account.id, patch)
        return account.model_copy(update=patch)

    async def record_failure(self, account: LinkedAccount, message: str) -> LinkedAccount:
        now = self.clock()
        failures = account.sync_error_count + 1
        delay = compute_backoff(failures, self.base, self.cap)
        patch = {
            "sync_error_count": failures,
            "next_attempt_at": now + delay,
            "last_sync_status": "error",
            "last_error": (message or "Sync failed.")[:MAX_ERROR_LENGTH],
        }
        await self.registry.update_health(account.id, patch)
        logger.warning(
            f"Account {account.id} ({account.provider}) failed {failures}x, "
            f"next attempt in {delay.total_seconds() / 60:.0f}m"
        )
        return account.model_copy(update=patch)
