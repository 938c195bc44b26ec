from datetime import timedelta

import pytest

from tether.models.integration import AccountStatus, LinkIntent
from tether.services.sync.database import ACCOUNTS_TABLE, CURSORS_TABLE, link_account


@pytest.mark.asyncio
async def test_create_and_get(registry):
    created = await registry.create("u1", "notion", "W1", display_name="Docs", meta={"workspaceId": "W1"})

    fetched = await registry.get(created.id)
    assert fetched.provider == "notion"
    assert fetched.external_account_id == "W1"
    assert fetched.status == AccountStatus.LINKED
    assert fetched.sync_error_count == 0


@pytest.mark.asyncio
async def test_get_missing_returns_none(registry):
    assert await registry.get("missing") is None


@pytest.mark.asyncio
async def test_no_silent_dedupe(registry, supabase):
    await registry.create("u1", "slack", "T1")
    await registry.create("u1", "slack", "T1")
    assert len(supabase.rows(ACCOUNTS_TABLE)) == 2


@pytest.mark.asyncio
async def test_list_due_filters_and_orders(registry, make_account, clock):
    first = make_account(provider="slack")
    second = make_account(provider="asana", next_attempt_at=(clock.now + timedelta(hours=1)).isoformat())
    make_account(provider="slack", status="pending")

    all_linked = await registry.list_due()
    assert [a.id for a in all_linked] == [first["id"], second["id"]]

    due = await registry.list_due(now_cutoff=clock.now)
    assert [a.id for a in due] == [first["id"]]

    asana = await registry.list_due(provider="asana")
    assert [a.id for a in asana] == [second["id"]]

    assert len(await registry.list_due(status=None)) == 3
    assert len(await registry.list_due(limit=1)) == 1


@pytest.mark.asyncio
async def test_update_health_rejects_other_fields(registry, make_account):
    row = make_account()
    with pytest.raises(ValueError):
        await registry.update_health(row["id"], {"user_id": "someone-else"})


@pytest.mark.asyncio
async def test_delete_pending_only_removes_pending_rows(registry, make_account, supabase):
    linked = make_account(status="linked")
    pending = make_account(status="pending")

    await registry.delete_pending(linked["id"])
    await registry.delete_pending(pending["id"])

    assert [r["id"] for r in supabase.rows(ACCOUNTS_TABLE)] == [linked["id"]]


@pytest.mark.asyncio
async def test_link_account_reauthorize_reuses_existing(registry, make_account):
    existing = make_account(provider="slack", external_account_id="T1")

    account, created = await link_account(registry, "user-1", "slack", "T1", "Acme", {}, LinkIntent.REAUTHORIZE)

    assert not created
    assert account.id == existing["id"]


@pytest.mark.asyncio
async def test_link_account_new_always_creates_pending(registry, make_account):
    make_account(provider="slack", external_account_id="T1")

    account, created = await link_account(registry, "user-1", "slack", "T1", "Acme", {}, LinkIntent.NEW)

    assert created
    assert account.status == AccountStatus.PENDING


@pytest.mark.asyncio
async def test_cursor_store_round_trip(cursors, supabase):
    assert await cursors.get("u1", "a1", "my_tasks") is None

    await cursors.put("u1", "a1", "my_tasks", "2024-05-01T00:00:00.000Z")
    await cursors.put("u1", "a1", "my_tasks", "2024-05-02T00:00:00.000Z")

    assert await cursors.get("u1", "a1", "my_tasks") == "2024-05-02T00:00:00.000Z"
    assert len(supabase.rows(CURSORS_TABLE)) == 1
