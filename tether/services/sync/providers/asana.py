"""
Asana Connector
Open tasks assigned to the connected user

- OAuth with PKCE (S256); access tokens expire after an hour and are refreshed
- Incremental: the cursor is the newest modified_at seen, sent back as
  modified_since on the next fetch
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from tether.core.errors import OAuthExchangeFailed, ProviderRequestFailed
from tether.models.integration import (
    ActivityPage,
    LinkedAccount,
    OAuthGrant,
    ProviderIdentity,
    ProviderItem,
)
from tether.services.sync.providers.base import ProviderClient, _str

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://app.asana.com/-/oauth_authorize"
TOKEN_URL = "https://app.asana.com/-/oauth_token"
API_BASE = "https://app.asana.com/api/1.0"

TASK_LIMIT = 50
MAX_TASK_PAGES = 20
TASK_FIELDS = ["name", "notes", "completed", "due_at", "due_on", "modified_at", "permalink_url"]
MAX_NOTES = 4000


def normalize_asana_task(task: Dict[str, Any]) -> Optional[ProviderItem]:
    gid = _str(task.get("gid"))
    url = _str(task.get("permalink_url"))
    if not gid or not url:
        return None

    due_on = _str(task.get("due_on"))
    due_at = _str(task.get("due_at")) or (f"{due_on}T00:00:00+00:00" if due_on else None)
    notes = task.get("notes")
    summary = notes[:MAX_NOTES] if isinstance(notes, str) and notes.strip() else None

    return ProviderItem(
        item_type="asana_task",
        external_id=gid,
        url=url,
        title=_str(task.get("name")) or "Asana task",
        summary=summary,
        status="done" if task.get("completed") else "open",
        due_at=due_at,
        occurred_at=_str(task.get("modified_at")),
        raw=task,
    )


def newest_modified_at(tasks: List[Dict[str, Any]], previous: Optional[str]) -> Optional[str]:
    """
    Cursor for the next fetch: the latest modified_at, never moving backwards.

    Examples:
        >>> newest_modified_at([{"modified_at": "2024-05-02T10:00:00.000Z"}], "2024-05-01T00:00:00.000Z")
        '2024-05-02T10:00:00.000Z'
        >>> newest_modified_at([], "2024-05-01T00:00:00.000Z")
        '2024-05-01T00:00:00.000Z'
    """
    newest = previous
    for task in tasks:
        modified = _str(task.get("modified_at"))
        # Asana timestamps are fixed-width ISO 8601 UTC, so string order is time order
        if modified and (newest is None or modified > newest):
            newest = modified
    return newest


class AsanaClient(ProviderClient):
    name = "asana"
    cursor_scope = "my_tasks"
    uses_pkce = True
    supports_refresh = True

    def build_authorization_url(self, redirect_uri: str, state: str, code_challenge: Optional[str] = None) -> str:
        client_id, _ = self._require_credentials()
        query = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if code_challenge:
            query["code_challenge_method"] = "S256"
            query["code_challenge"] = code_challenge
        return f"{AUTHORIZE_URL}?{urlencode(query)}"

    def _grant_from(self, data: Dict[str, Any], action: str) -> OAuthGrant:
        access_token = _str(data.get("access_token"))
        expires_in = data.get("expires_in")
        if not access_token or not isinstance(expires_in, (int, float)) or isinstance(expires_in, bool):
            raise OAuthExchangeFailed(f"Asana token {action} returned an invalid response")
        return OAuthGrant(
            access_token=access_token,
            refresh_token=_str(data.get("refresh_token")),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )

    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> OAuthGrant:
        client_id, client_secret = self._require_credentials()
        form = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "code": code,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier

        grant = self._grant_from(await self._token_request("POST", TOKEN_URL, data=form), "exchange")

        try:
            me = await self.fetch_me(grant.access_token)
        except ProviderRequestFailed as e:
            raise OAuthExchangeFailed("Asana users/me failed after token exchange") from e

        logger.info(f"✅ Asana user {me.external_account_id} authorized")
        return grant.model_copy(update={"identity": me})

    async def refresh_access_token(self, refresh_token: str) -> OAuthGrant:
        client_id, client_secret = self._require_credentials()
        data = await self._token_request("POST", TOKEN_URL, data={
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        })
        return self._grant_from(data, "refresh")

    async def _get(self, access_token: str, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return await self._request_json(
            "GET",
            f"{API_BASE}/{path}",
            params=params,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def fetch_me(self, access_token: str) -> ProviderIdentity:
        data = await self._get(access_token, "users/me")
        me = data.get("data") if isinstance(data.get("data"), dict) else {}
        gid = _str(me.get("gid"))
        if not gid:
            raise ProviderRequestFailed(200, "users/me missing gid", provider=self.name)

        workspaces = me.get("workspaces") if isinstance(me.get("workspaces"), list) else []
        default_workspace = next(
            (w["gid"] for w in workspaces if isinstance(w, dict) and _str(w.get("gid"))),
            None,
        )
        return ProviderIdentity(
            external_account_id=gid,
            display_name=_str(me.get("name")) or _str(me.get("email")),
            meta={"email": _str(me.get("email")), "defaultWorkspaceGid": default_workspace},
        )

    async def fetch_recent_activity(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        account: Optional[LinkedAccount] = None,
    ) -> ActivityPage:
        workspace_gid = _str((account.meta if account else {}).get("defaultWorkspaceGid"))
        if not workspace_gid:
            workspace_gid = _str((await self.fetch_me(access_token)).meta.get("defaultWorkspaceGid"))
        if not workspace_gid:
            raise ProviderRequestFailed(None, "missing_workspace", provider=self.name)

        params = {
            "assignee": "me",
            "workspace": workspace_gid,
            "completed_since": "now",
            "limit": str(TASK_LIMIT),
            "opt_fields": ",".join(TASK_FIELDS),
        }
        if cursor:
            params["modified_since"] = cursor

        tasks: List[Dict[str, Any]] = []
        offset: Optional[str] = None
        for _ in range(MAX_TASK_PAGES):
            if offset:
                params["offset"] = offset
            data = await self._get(access_token, "tasks", params)
            raw_tasks = data.get("data") if isinstance(data.get("data"), list) else []
            tasks.extend(t for t in raw_tasks if isinstance(t, dict))
            next_page = data.get("next_page") if isinstance(data.get("next_page"), dict) else {}
            offset = _str(next_page.get("offset"))
            if not offset:
                break

        items = [item for item in (normalize_asana_task(t) for t in tasks) if item]
        if offset:
            # Pages are not ordered by modified_at, so unread pages may hold older changes
            logger.warning(f"⚠️  Asana: stopped after {MAX_TASK_PAGES} pages, cursor not advanced")
            return ActivityPage(items=items, next_cursor=cursor)

        logger.info(f"✅ Asana: {len(items)} open tasks")
        return ActivityPage(items=items, next_cursor=newest_modified_at(tasks, cursor))
