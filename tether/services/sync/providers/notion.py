"""
Notion Connector
Recently edited pages and databases, via POST /v1/search

Notion access tokens do not expire and no refresh token is issued.
"""
import base64
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from tether.core.errors import OAuthExchangeFailed
from tether.models.integration import (
    ActivityPage,
    LinkedAccount,
    OAuthGrant,
    ProviderIdentity,
    ProviderItem,
)
from tether.services.sync.providers.base import ProviderClient, _str

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://api.notion.com/v1/oauth/authorize"
TOKEN_URL = "https://api.notion.com/v1/oauth/token"
API_BASE = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

PAGE_SIZE = 25


def _plain_text(rich_text: Any) -> Optional[str]:
    if not isinstance(rich_text, list):
        return None
    text = "".join(
        part.get("plain_text", "") for part in rich_text
        if isinstance(part, dict) and isinstance(part.get("plain_text"), str)
    ).strip()
    return text or None


def extract_title(result: Dict[str, Any]) -> Optional[str]:
    """
    Title of a page or database search result.

    Databases carry a top-level "title"; pages carry it in whichever
    property has type "title".
    """
    title = _plain_text(result.get("title"))
    if title:
        return title

    properties = result.get("properties")
    if isinstance(properties, dict):
        for prop in properties.values():
            if isinstance(prop, dict) and prop.get("type") == "title":
                return _plain_text(prop.get("title"))
    return None


def normalize_notion_result(result: Dict[str, Any], workspace_name: Optional[str]) -> Optional[ProviderItem]:
    external_id = _str(result.get("id"))
    url = _str(result.get("url"))
    if not external_id or not url:
        return None

    obj = _str(result.get("object"))
    fallback = f"Notion ({workspace_name})" if workspace_name else "Notion"

    return ProviderItem(
        item_type=f"notion_{obj}" if obj else "notion_item",
        external_id=external_id,
        url=url,
        title=extract_title(result) or fallback,
        occurred_at=_str(result.get("last_edited_time")) or _str(result.get("created_time")),
        raw=result,
    )


class NotionClient(ProviderClient):
    name = "notion"

    def build_authorization_url(self, redirect_uri: str, state: str, code_challenge: Optional[str] = None) -> str:
        client_id, _ = self._require_credentials()
        query = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "owner": "user",
            "state": state,
        }
        return f"{AUTHORIZE_URL}?{urlencode(query)}"

    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> OAuthGrant:
        client_id, client_secret = self._require_credentials()
        basic = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("ascii")

        data = await self._token_request(
            "POST",
            TOKEN_URL,
            headers={"Authorization": f"Basic {basic}"},
            json={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )

        access_token = _str(data.get("access_token"))
        workspace_id = _str(data.get("workspace_id"))
        if not access_token or not workspace_id:
            raise OAuthExchangeFailed("Notion token exchange returned an invalid response")
        workspace_name = _str(data.get("workspace_name"))

        logger.info(f"✅ Notion workspace {workspace_id} authorized")
        return OAuthGrant(
            access_token=access_token,
            identity=ProviderIdentity(
                external_account_id=workspace_id,
                display_name=workspace_name,
                meta={"workspaceId": workspace_id, "workspaceName": workspace_name, "botId": _str(data.get("bot_id"))},
            ),
        )

    async def fetch_recent_activity(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        account: Optional[LinkedAccount] = None,
    ) -> ActivityPage:
        data = await self._request_json(
            "POST",
            f"{API_BASE}/search",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Notion-Version": NOTION_VERSION,
            },
            json={
                "page_size": PAGE_SIZE,
                "sort": {"timestamp": "last_edited_time", "direction": "descending"},
            },
        )

        results = data.get("results") if isinstance(data.get("results"), list) else []
        workspace_name = account.display_name if account else None

        items: List[ProviderItem] = []
        for result in results:
            if not isinstance(result, dict):
                continue
            item = normalize_notion_result(result, workspace_name)
            if item:
                items.append(item)

        logger.info(f"📄 Notion: {len(items)} recent items")
        return ActivityPage(items=items)
