"""
Integration Routes
OAuth connect/callback and manual "sync now" per provider

SECURITY:
- Connect and manual sync require a Supabase session
- Connect is rate limited to prevent OAuth abuse
- The callback trusts only the signed handshake cookie + single-use state,
  and only ever redirects to an internal path
"""
import logging
from typing import Optional
from fastapi import APIRouter, Cookie, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from tether.core.config import Settings, get_settings
from tether.core.dependencies import get_connect_service, get_orchestrator
from tether.core.security import get_current_user_id
from tether.middleware.rate_limit import CONNECT_LIMIT, MANUAL_SYNC_LIMIT, limiter
from tether.models.schemas import ConnectStartResponse, ManualSyncResponse
from tether.services.sync.connect import ConnectService
from tether.services.sync.handshake import HANDSHAKE_COOKIE
from tether.services.sync.orchestration.scheduled_sync import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])

COOKIE_PATH = "/integrations"


@router.get("/{provider}/connect", response_model=ConnectStartResponse)
@limiter.limit(CONNECT_LIMIT)
async def connect_start(
    request: Request,  # Required for rate limiting
    response: Response,
    provider: str,
    return_to: Optional[str] = Query(None, alias="returnTo"),
    user_id: str = Depends(get_current_user_id),
    connect: ConnectService = Depends(get_connect_service),
    settings: Settings = Depends(get_settings),
):
    """
    Start linking a provider account.

    Flow:
    1. Frontend calls this endpoint with the user's session
    2. We store the handshake server-side and set the signed state cookie
    3. Frontend navigates the browser to auth_url
    4. Provider redirects back to /integrations/{provider}/callback
    """
    start = connect.begin_connect(user_id, provider, return_to)

    response.set_cookie(
        HANDSHAKE_COOKIE,
        start.cookie_value,
        max_age=settings.oauth_handshake_ttl_seconds,
        path=COOKIE_PATH,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "production",
    )
    return ConnectStartResponse(auth_url=start.auth_url, provider=provider)


@router.get("/{provider}/callback")
async def connect_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    handshake_cookie: Optional[str] = Cookie(None, alias=HANDSHAKE_COOKIE),
    connect: ConnectService = Depends(get_connect_service),
    settings: Settings = Depends(get_settings),
):
    """Provider redirect target. Always answers with a redirect."""
    path = await connect.complete_connect(provider, code, state, handshake_cookie, error=error)

    redirect = RedirectResponse(url=f"{settings.site_url.rstrip('/')}{path}", status_code=302)
    redirect.delete_cookie(HANDSHAKE_COOKIE, path=COOKIE_PATH)
    return redirect


@router.post("/{provider}/sync", response_model=ManualSyncResponse)
@limiter.limit(MANUAL_SYNC_LIMIT)
async def manual_sync(
    request: Request,  # Required for rate limiting
    provider: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Sync this user's accounts for one provider right now (ignores backoff)."""
    logger.info(f"🔄 Manual {provider} sync requested by user {user_id}")
    imported = await orchestrator.sync_user_provider(user_id, provider)
    return ManualSyncResponse(imported=imported)
