"""
Slack Connector
Mentions of the connected user, via search.messages

Slack returns HTTP 200 with {"ok": false, "error": "..."} for most API
failures, so "ok" is checked on every response.
"""
import logging
from datetime import datetime, timezone
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
from tether.services.sync.canonical import slack_message_id, slack_redirect_url
from tether.services.sync.providers.base import ProviderClient, _str

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"
API_BASE = "https://slack.com/api"

SEARCH_COUNT = 50
MAX_TEXT = 4000


def ts_to_datetime(ts: Optional[str]) -> Optional[datetime]:
    """
    Slack "ts" is epoch seconds with a sequence suffix.

    Examples:
        >>> ts_to_datetime("1712345678.000100").year
        2024
        >>> ts_to_datetime("nope") is None
        True
    """
    try:
        seconds = float(ts)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def normalize_slack_match(match: Dict[str, Any]) -> Optional[ProviderItem]:
    """Map one search.messages match. Matches without channel id or ts are dropped."""
    channel = match.get("channel") if isinstance(match.get("channel"), dict) else {}
    channel_id = _str(channel.get("id"))
    ts = _str(match.get("ts"))
    if not channel_id or not ts:
        return None

    channel_name = _str(channel.get("name"))
    text = _str(match.get("text"))

    return ProviderItem(
        item_type="slack_message",
        external_id=slack_message_id(channel_id, ts),
        url=_str(match.get("permalink")) or slack_redirect_url(channel_id, ts),
        title=f"#{channel_name}" if channel_name else "Slack message",
        summary=text[:MAX_TEXT] if text else None,
        author=_str(match.get("username")),
        channel=channel_name or channel_id,
        occurred_at=ts_to_datetime(ts),
        raw=match,
    )


class SlackClient(ProviderClient):
    name = "slack"
    scopes = [
        "channels:read",
        "channels:history",
        "users:read",
        "users:read.email",
        "team:read",
        "search:read",
    ]

    def build_authorization_url(self, redirect_uri: str, state: str, code_challenge: Optional[str] = None) -> str:
        client_id, _ = self._require_credentials()
        query = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": ",".join(self.scopes),
        }
        return f"{AUTHORIZE_URL}?{urlencode(query)}"

    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> OAuthGrant:
        client_id, client_secret = self._require_credentials()
        data = await self._token_request(
            "POST",
            f"{API_BASE}/oauth.v2.access",
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )

        access_token = _str(data.get("access_token"))
        if not data.get("ok") or not access_token:
            raise OAuthExchangeFailed(f"Slack token exchange failed: {data.get('error') or 'invalid response'}")

        team = data.get("team") if isinstance(data.get("team"), dict) else {}
        team_id = _str(team.get("id"))
        if not team_id:
            raise OAuthExchangeFailed("Slack OAuth response missing team id")
        team_name = _str(team.get("name"))
        authed_user = data.get("authed_user") if isinstance(data.get("authed_user"), dict) else {}
        authed_user_id = _str(authed_user.get("id"))

        scope = data.get("scope") if isinstance(data.get("scope"), str) else ""
        logger.info(f"✅ Slack workspace {team_id} authorized")

        return OAuthGrant(
            access_token=access_token,
            scopes=[s.strip() for s in scope.split(",") if s.strip()],
            identity=ProviderIdentity(
                external_account_id=team_id,
                display_name=team_name,
                meta={"teamId": team_id, "teamName": team_name, "authedUserId": authed_user_id},
            ),
        )

    async def _api(self, access_token: str, method: str, params: Dict[str, str]) -> Dict[str, Any]:
        data = await self._request_json(
            "GET",
            f"{API_BASE}/{method}",
            params=params,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if not data.get("ok"):
            error = data.get("error") if isinstance(data.get("error"), str) else "Slack request failed."
            raise ProviderRequestFailed(200, f"{method}: {error}", provider=self.name)
        return data

    async def fetch_recent_activity(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        account: Optional[LinkedAccount] = None,
    ) -> ActivityPage:
        meta = account.meta if account else {}
        authed_user_id = _str(meta.get("authedUserId"))
        if not authed_user_id:
            raise ProviderRequestFailed(None, "missing_authed_user", provider=self.name)

        data = await self._api(access_token, "search.messages", {
            "query": f"<@{authed_user_id}>",
            "count": str(SEARCH_COUNT),
            "sort": "timestamp",
            "sort_dir": "desc",
        })

        messages = data.get("messages") if isinstance(data.get("messages"), dict) else {}
        matches = messages.get("matches") if isinstance(messages.get("matches"), list) else []

        items: List[ProviderItem] = []
        for match in matches:
            if not isinstance(match, dict):
                continue
            item = normalize_slack_match(match)
            if item:
                items.append(item)

        logger.info(f"📨 Slack: {len(items)} mentions")
        return ActivityPage(items=items)
