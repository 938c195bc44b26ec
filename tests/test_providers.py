"""Provider clients against an httpx MockTransport."""
import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from tether.core.errors import (
    ConfigurationError,
    OAuthExchangeFailed,
    ProviderRequestFailed,
    UnsupportedProvider,
)
from tether.models.integration import LinkedAccount
from tether.services.sync.providers import (
    AsanaClient,
    NotionClient,
    SlackClient,
    build_provider_registry,
)

REDIRECT = "https://tether.test/integrations/x/callback"


def transport(handler):
    """Record every request and answer with handler(request)."""
    seen = []

    def _handle(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(_handle)), seen


def _account(provider, **overrides) -> LinkedAccount:
    data = {"id": "a1", "user_id": "u1", "provider": provider, "external_account_id": "X"}
    data.update(overrides)
    return LinkedAccount(**data)


def _query(url) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(str(url)).query).items()}


# ============================================================================
# SLACK
# ============================================================================

SLACK_OAUTH_OK = {
    "ok": True,
    "access_token": "xoxb-1",
    "scope": "channels:read,search:read",
    "team": {"id": "T1", "name": "Acme"},
    "authed_user": {"id": "U1"},
}


def test_slack_authorization_url_has_state_and_scopes():
    client = SlackClient(httpx.AsyncClient(), client_id="slack-id", client_secret="s")
    query = _query(client.build_authorization_url(REDIRECT, "state-1"))
    assert query["client_id"] == "slack-id"
    assert query["state"] == "state-1"
    assert query["redirect_uri"] == REDIRECT
    assert "search:read" in query["scope"].split(",")


def test_missing_client_credentials_is_configuration_error():
    client = SlackClient(httpx.AsyncClient())
    with pytest.raises(ConfigurationError):
        client.build_authorization_url(REDIRECT, "s")


@pytest.mark.asyncio
async def test_slack_exchange_maps_identity():
    http, seen = transport(lambda r: httpx.Response(200, json=SLACK_OAUTH_OK))
    client = SlackClient(http, client_id="slack-id", client_secret="slack-secret")

    grant = await client.exchange_code("code-1", REDIRECT)

    assert grant.access_token == "xoxb-1"
    assert grant.scopes == ["channels:read", "search:read"]
    assert grant.identity.external_account_id == "T1"
    assert grant.identity.meta["authedUserId"] == "U1"
    form = parse_qs(seen[0].content.decode())
    assert form["code"] == ["code-1"]


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"ok": False, "error": "invalid_code"},
    {"ok": True, "access_token": "xoxb-1", "team": {}},
])
async def test_slack_exchange_rejects_bad_responses(body):
    http, _ = transport(lambda r: httpx.Response(200, json=body))
    client = SlackClient(http, client_id="slack-id", client_secret="slack-secret")
    with pytest.raises(OAuthExchangeFailed):
        await client.exchange_code("code-1", REDIRECT)


@pytest.mark.asyncio
async def test_slack_exchange_http_error_is_exchange_failure():
    http, _ = transport(lambda r: httpx.Response(500, text="oops"))
    client = SlackClient(http, client_id="slack-id", client_secret="slack-secret")
    with pytest.raises(OAuthExchangeFailed):
        await client.exchange_code("code-1", REDIRECT)


@pytest.mark.asyncio
async def test_slack_fetch_searches_mentions_and_normalizes():
    body = {"ok": True, "messages": {"matches": [
        {"channel": {"id": "C1", "name": "general"}, "ts": "1712345678.000100",
         "text": "hi <@U1>", "permalink": "https://acme.slack.com/p1", "username": "bob"},
        {"channel": {"id": "C2"}, "ts": "1712345679.000200", "text": "ping"},
        {"channel": {}, "ts": "1.0"},
        "garbage",
    ]}}
    http, seen = transport(lambda r: httpx.Response(200, json=body))
    client = SlackClient(http, client_id="slack-id", client_secret="slack-secret")

    page = await client.fetch_recent_activity("xoxb-1", account=_account("slack", meta={"authedUserId": "U1"}))

    assert _query(seen[0].url)["query"] == "<@U1>"
    assert seen[0].headers["Authorization"] == "Bearer xoxb-1"
    assert [i.external_id for i in page.items] == ["C1:1712345678.000100", "C2:1712345679.000200"]
    first, second = page.items
    assert first.title == "#general"
    assert first.url == "https://acme.slack.com/p1"
    assert first.occurred_at.tzinfo is not None
    assert second.url.startswith("https://slack.com/app_redirect?channel=C2")
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_slack_fetch_ok_false_is_request_failure():
    http, _ = transport(lambda r: httpx.Response(200, json={"ok": False, "error": "invalid_auth"}))
    client = SlackClient(http, client_id="slack-id", client_secret="slack-secret")
    with pytest.raises(ProviderRequestFailed) as exc:
        await client.fetch_recent_activity("t", account=_account("slack", meta={"authedUserId": "U1"}))
    assert "invalid_auth" in exc.value.body


@pytest.mark.asyncio
async def test_slack_fetch_without_authed_user_fails_before_any_request():
    http, seen = transport(lambda r: httpx.Response(200, json={"ok": True}))
    client = SlackClient(http, client_id="slack-id", client_secret="slack-secret")
    with pytest.raises(ProviderRequestFailed):
        await client.fetch_recent_activity("t", account=_account("slack"))
    assert seen == []


# ============================================================================
# NOTION
# ============================================================================

@pytest.mark.asyncio
async def test_notion_exchange_uses_basic_auth():
    body = {"access_token": "ntn-1", "workspace_id": "W1", "workspace_name": "Docs", "bot_id": "B1"}
    http, seen = transport(lambda r: httpx.Response(200, json=body))
    client = NotionClient(http, client_id="notion-id", client_secret="notion-secret")

    grant = await client.exchange_code("code-1", REDIRECT)

    assert seen[0].headers["Authorization"].startswith("Basic ")
    assert json.loads(seen[0].content)["grant_type"] == "authorization_code"
    assert grant.identity.external_account_id == "W1"
    assert grant.refresh_token is None


@pytest.mark.asyncio
async def test_notion_exchange_without_workspace_fails():
    http, _ = transport(lambda r: httpx.Response(200, json={"access_token": "ntn-1"}))
    client = NotionClient(http, client_id="notion-id", client_secret="notion-secret")
    with pytest.raises(OAuthExchangeFailed):
        await client.exchange_code("code-1", REDIRECT)


@pytest.mark.asyncio
async def test_notion_fetch_maps_pages_and_databases():
    body = {"results": [
        {"object": "page", "id": "p1", "url": "https://notion.so/p1", "last_edited_time": "2024-05-01T10:00:00.000Z",
         "properties": {"Name": {"type": "title", "title": [{"plain_text": "Roadmap"}]}}},
        {"object": "database", "id": "d1", "url": "https://notion.so/d1",
         "title": [{"plain_text": "Tasks"}]},
        {"object": "page", "id": "p2", "url": "https://notion.so/p2", "properties": {}},
        {"object": "page", "id": "p3"},
    ]}
    http, seen = transport(lambda r: httpx.Response(200, json=body))
    client = NotionClient(http, client_id="notion-id", client_secret="notion-secret")

    page = await client.fetch_recent_activity("ntn-1", account=_account("notion", display_name="Docs"))

    assert seen[0].headers["Notion-Version"] == "2022-06-28"
    assert json.loads(seen[0].content)["page_size"] == 25
    assert [(i.item_type, i.title) for i in page.items] == [
        ("notion_page", "Roadmap"),
        ("notion_database", "Tasks"),
        ("notion_page", "Notion (Docs)"),
    ]
    assert page.items[0].occurred_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_notion_non_json_body_is_request_failure():
    http, _ = transport(lambda r: httpx.Response(200, text="<html>"))
    client = NotionClient(http, client_id="notion-id", client_secret="notion-secret")
    with pytest.raises(ProviderRequestFailed):
        await client.fetch_recent_activity("ntn-1")


@pytest.mark.asyncio
async def test_notion_refresh_is_not_supported():
    client = NotionClient(httpx.AsyncClient(), client_id="notion-id", client_secret="notion-secret")
    with pytest.raises(OAuthExchangeFailed):
        await client.refresh_access_token("r")


# ============================================================================
# ASANA
# ============================================================================

ASANA_ME = {"data": {"gid": "100", "name": "Ada", "email": "ada@example.com", "workspaces": [{"gid": "W9"}]}}


def test_asana_authorization_url_carries_challenge_only():
    client = AsanaClient(httpx.AsyncClient(), client_id="asana-id", client_secret="s")
    url = client.build_authorization_url(REDIRECT, "state-1", code_challenge="chal")
    query = _query(url)
    assert query["code_challenge"] == "chal"
    assert query["code_challenge_method"] == "S256"
    assert "code_verifier" not in query


@pytest.mark.asyncio
async def test_asana_exchange_sends_verifier_and_loads_identity():
    def handler(request):
        if request.url.path.endswith("oauth_token"):
            return httpx.Response(200, json={"access_token": "as-1", "refresh_token": "r-1", "expires_in": 3600})
        return httpx.Response(200, json=ASANA_ME)

    http, seen = transport(handler)
    client = AsanaClient(http, client_id="asana-id", client_secret="asana-secret")

    grant = await client.exchange_code("code-1", REDIRECT, code_verifier="verifier-1")

    assert parse_qs(seen[0].content.decode())["code_verifier"] == ["verifier-1"]
    assert grant.refresh_token == "r-1"
    assert grant.expires_at > datetime.now(timezone.utc)
    assert grant.identity.external_account_id == "100"
    assert grant.identity.meta["defaultWorkspaceGid"] == "W9"


@pytest.mark.asyncio
async def test_asana_exchange_requires_expiry():
    http, _ = transport(lambda r: httpx.Response(200, json={"access_token": "as-1"}))
    client = AsanaClient(http, client_id="asana-id", client_secret="asana-secret")
    with pytest.raises(OAuthExchangeFailed):
        await client.exchange_code("code-1", REDIRECT)


@pytest.mark.asyncio
async def test_asana_refresh():
    http, seen = transport(lambda r: httpx.Response(200, json={"access_token": "as-2", "expires_in": 3600}))
    client = AsanaClient(http, client_id="asana-id", client_secret="asana-secret")

    grant = await client.refresh_access_token("r-1")

    assert parse_qs(seen[0].content.decode())["grant_type"] == ["refresh_token"]
    assert grant.access_token == "as-2"


@pytest.mark.asyncio
async def test_asana_fetch_uses_and_advances_cursor():
    tasks = {"data": [
        {"gid": "1", "name": "Write", "permalink_url": "https://app.asana.com/1",
         "modified_at": "2024-05-03T09:00:00.000Z", "due_on": "2024-05-10"},
        {"gid": "2", "name": "Ship", "permalink_url": "https://app.asana.com/2",
         "modified_at": "2024-05-02T09:00:00.000Z", "completed": False},
        {"gid": "3"},
    ]}
    http, seen = transport(lambda r: httpx.Response(200, json=tasks))
    client = AsanaClient(http, client_id="asana-id", client_secret="asana-secret")
    account = _account("asana", meta={"defaultWorkspaceGid": "W9"})

    page = await client.fetch_recent_activity("as-1", cursor="2024-05-01T00:00:00.000Z", account=account)

    params = _query(seen[0].url)
    assert params["assignee"] == "me"
    assert params["workspace"] == "W9"
    assert params["modified_since"] == "2024-05-01T00:00:00.000Z"
    assert [i.external_id for i in page.items] == ["1", "2"]
    assert page.items[0].due_at == datetime(2024, 5, 10, tzinfo=timezone.utc)
    assert page.items[1].status == "open"
    assert page.next_cursor == "2024-05-03T09:00:00.000Z"


@pytest.mark.asyncio
async def test_asana_fetch_follows_next_page_before_advancing_cursor():
    pages = {
        None: {"data": [{"gid": "1", "name": "Newest", "permalink_url": "https://app.asana.com/1", "modified_at": "2024-05-04T09:00:00.000Z"}],
               "next_page": {"offset": "tok-2", "uri": "https://app.asana.com/api/1.0/tasks?offset=tok-2"}},
        "tok-2": {"data": [{"gid": "2", "name": "Older", "permalink_url": "https://app.asana.com/2", "modified_at": "2024-05-02T09:00:00.000Z"}],
                  "next_page": None},
    }
    http, seen = transport(lambda r: httpx.Response(200, json=pages[_query(r.url).get("offset")]))
    client = AsanaClient(http, client_id="asana-id", client_secret="asana-secret")
    account = _account("asana", meta={"defaultWorkspaceGid": "W9"})

    page = await client.fetch_recent_activity("as-1", cursor="2024-05-01T00:00:00.000Z", account=account)

    assert len(seen) == 2
    assert _query(seen[1].url)["modified_since"] == "2024-05-01T00:00:00.000Z"
    assert [i.external_id for i in page.items] == ["1", "2"]
    assert page.next_cursor == "2024-05-04T09:00:00.000Z"


@pytest.mark.asyncio
async def test_asana_fetch_keeps_cursor_when_pages_remain(monkeypatch):
    monkeypatch.setattr("tether.services.sync.providers.asana.MAX_TASK_PAGES", 1)
    truncated = {"data": [{"gid": "1", "name": "Newest", "permalink_url": "https://app.asana.com/1", "modified_at": "2024-05-04T09:00:00.000Z"}],
                 "next_page": {"offset": "tok-2"}}
    http, seen = transport(lambda r: httpx.Response(200, json=truncated))
    client = AsanaClient(http, client_id="asana-id", client_secret="asana-secret")
    account = _account("asana", meta={"defaultWorkspaceGid": "W9"})

    page = await client.fetch_recent_activity("as-1", cursor="2024-05-01T00:00:00.000Z", account=account)

    assert len(seen) == 1
    assert [i.external_id for i in page.items] == ["1"]
    assert page.next_cursor == "2024-05-01T00:00:00.000Z"


@pytest.mark.asyncio
async def test_asana_fetch_without_cursor_omits_modified_since():
    http, seen = transport(lambda r: httpx.Response(200, json={"data": []}))
    client = AsanaClient(http, client_id="asana-id", client_secret="asana-secret")

    page = await client.fetch_recent_activity("as-1", account=_account("asana", meta={"defaultWorkspaceGid": "W9"}))

    assert "modified_since" not in _query(seen[0].url)
    assert page.items == []
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_asana_unauthorized_is_request_failure_with_status():
    http, _ = transport(lambda r: httpx.Response(401, json={"errors": [{"message": "Not Authorized"}]}))
    client = AsanaClient(http, client_id="asana-id", client_secret="asana-secret")
    with pytest.raises(ProviderRequestFailed) as exc:
        await client.fetch_recent_activity("as-1", account=_account("asana", meta={"defaultWorkspaceGid": "W9"}))
    assert exc.value.status == 401
    assert exc.value.provider == "asana"


@pytest.mark.asyncio
async def test_timeout_is_request_failure():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    http, _ = transport(handler)
    client = AsanaClient(http, client_id="asana-id", client_secret="asana-secret")
    with pytest.raises(ProviderRequestFailed) as exc:
        await client.fetch_recent_activity("as-1", account=_account("asana", meta={"defaultWorkspaceGid": "W9"}))
    assert exc.value.status is None


# ============================================================================
# REGISTRY
# ============================================================================

def test_registry_resolves_known_providers(settings):
    registry = build_provider_registry(settings, httpx.AsyncClient())
    assert registry.names() == ["asana", "notion", "slack"]
    assert registry.get("asana").client_id == "asana-id"


def test_registry_rejects_unknown_provider(settings):
    registry = build_provider_registry(settings, httpx.AsyncClient())
    with pytest.raises(UnsupportedProvider):
        registry.get("jira")
