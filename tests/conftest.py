"""
Shared fixtures: an in-memory stand-in for the Supabase query builder,
settings with test secrets, and a controllable clock.
"""
import base64
import copy
import itertools
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

os.environ.setdefault("ENVIRONMENT", "test")

import pytest

from tether.core.config import Settings
from tether.core.encryption import SecretCipher
from tether.services.sync.audit import IntegrationAuditLog
from tether.services.sync.database import LinkedAccountRegistry, SyncCursorStore
from tether.services.sync.health import SyncHealthTracker
from tether.services.sync.persistence import ItemIngestor
from tether.services.sync.vault import TokenVault

TEST_KEY = bytes(range(32))


# ============================================================================
# FAKE SUPABASE
# ============================================================================

class FakeResponse:
    def __init__(self, data):
        self.data = data


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: List = []
        self.or_filters: List = []
        self.order_by: Optional[tuple] = None
        self.limit_n: Optional[int] = None
        self.single = False

    # -- builders ----------------------------------------------------------

    def select(self, *_columns):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict: Optional[str] = None):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def or_(self, expression: str):
        for clause in expression.split(","):
            column, operator, value = clause.split(".", 2)
            self.or_filters.append((column, operator, value))
        return self

    def order(self, column, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, n: int):
        self.limit_n = n
        return self

    def maybe_single(self):
        self.single = True
        return self

    # -- evaluation --------------------------------------------------------

    def _matches(self, row: Dict[str, Any]) -> bool:
        if any(row.get(c) != v for c, v in self.filters):
            return False
        if not self.or_filters:
            return True
        for column, operator, value in self.or_filters:
            current = row.get(column)
            if operator == "is" and value == "null" and current is None:
                return True
            if operator == "lte" and current is not None and _parse_time(current) <= _parse_time(value):
                return True
        return False

    def execute(self):
        self.db.calls.append((self.table_name, self.op, copy.deepcopy(self.payload)))
        failure = self.db.failures.get((self.table_name, self.op))
        if failure is not None:
            raise failure

        rows = self.db.tables.setdefault(self.table_name, [])

        if self.op == "insert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self.db._new_row(self.table_name, p) for p in payloads]
            rows.extend(inserted)
            return FakeResponse(copy.deepcopy(inserted))

        if self.op == "upsert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = [k.strip() for k in (self.on_conflict or "id").split(",")]
            seen = set()
            written = []
            for p in payloads:
                key = tuple(p.get(k) for k in keys)
                if key in seen:
                    raise RuntimeError("ON CONFLICT DO UPDATE command cannot affect row a second time")
                seen.add(key)
                existing = next((r for r in rows if tuple(r.get(k) for k in keys) == key), None)
                if existing is not None:
                    existing.update(copy.deepcopy(p))
                    written.append(existing)
                else:
                    row = self.db._new_row(self.table_name, p)
                    rows.append(row)
                    written.append(row)
            return FakeResponse(copy.deepcopy(written))

        matched = [r for r in rows if self._matches(r)]

        if self.op == "update":
            for r in matched:
                r.update(copy.deepcopy(self.payload))
            return FakeResponse(copy.deepcopy(matched))

        if self.op == "delete":
            self.db.tables[self.table_name] = [r for r in rows if r not in matched]
            return FakeResponse(copy.deepcopy(matched))

        if self.order_by:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda r: r.get(column) or "", reverse=desc)
        if self.limit_n is not None:
            matched = matched[: self.limit_n]
        if self.single:
            # supabase-py returns None when maybe_single() finds nothing
            return FakeResponse(copy.deepcopy(matched[0])) if matched else None
        return FakeResponse(copy.deepcopy(matched))


class FakeSupabase:
    """Dict-backed subset of the supabase-py table API."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, Exception] = {}
        self._seq = itertools.count(1)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, table: str, op: str, error: Optional[Exception] = None):
        self.failures[(table, op)] = error or RuntimeError(f"{table} {op} failed")

    def _new_row(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(payload)
        n = next(self._seq)
        row.setdefault("id", str(uuid.UUID(int=n)))
        row.setdefault("created_at", (datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=n)).isoformat())
        return row

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])

    def writes(self, table: Optional[str] = None) -> List[tuple]:
        return [c for c in self.calls if c[1] != "select" and (table is None or c[0] == table)]


# ============================================================================
# CLOCK
# ============================================================================

class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        site_url="https://tether.test",
        supabase_url="https://db.tether.test",
        supabase_service_key="service-key",
        app_encryption_key=base64.b64encode(TEST_KEY).decode(),
        cron_secret="cron-secret",
        oauth_cookie_secret="cookie-secret",
        slack_client_id="slack-id",
        slack_client_secret="slack-secret",
        notion_client_id="notion-id",
        notion_client_secret="notion-secret",
        asana_client_id="asana-id",
        asana_client_secret="asana-secret",
    )


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher(TEST_KEY)


@pytest.fixture
def registry(supabase) -> LinkedAccountRegistry:
    return LinkedAccountRegistry(supabase)


@pytest.fixture
def vault(supabase, cipher) -> TokenVault:
    return TokenVault(supabase, cipher)


@pytest.fixture
def health(registry, settings, clock) -> SyncHealthTracker:
    return SyncHealthTracker.from_settings(registry, settings, clock=clock)


@pytest.fixture
def ingestor(supabase, clock) -> ItemIngestor:
    return ItemIngestor(supabase, clock=clock)


@pytest.fixture
def cursors(supabase) -> SyncCursorStore:
    return SyncCursorStore(supabase)


@pytest.fixture
def audit(supabase) -> IntegrationAuditLog:
    return IntegrationAuditLog(supabase)


def insert_account(supabase: FakeSupabase, **overrides) -> Dict[str, Any]:
    """Put a linked account row straight into the fake table."""
    row = {
        "user_id": "user-1",
        "provider": "slack",
        "external_account_id": "T1",
        "display_name": "Acme",
        "meta": {"authedUserId": "U1"},
        "status": "linked",
        "sync_error_count": 0,
        "next_attempt_at": None,
        "last_error": None,
    }
    row.update(overrides)
    created = supabase._new_row("integration_accounts", row)
    supabase.tables.setdefault("integration_accounts", []).append(created)
    return created


@pytest.fixture
def make_account(supabase):
    def _make(**overrides) -> Dict[str, Any]:
        return insert_account(supabase, **overrides)
    return _make
