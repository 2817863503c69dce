from __future__ import annotations

import json
import logging
import urllib.parse as up
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_current_user_id
from app.config import FRONTEND_URL, configured_providers
from app.db import get_db
from app.exceptions import IntegrationError, InvalidRequest, StorageError, Unauthorized
from app.http_client import get_http_client
from app.schemas.integration import (ConnectedIntegration, IntegrationRequest,
                                     SyncResponse, TokenRefreshResponse)
from app.services.oauth_service import OAuthService
from app.services.providers.registry import normalize_provider
from app.services.sync_service import SyncService
from app.services.token_service import TokenService
from app.services.token_store import TokenStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrations", tags=["Integrations"])


# -------------------------------------------------------------------------
# OAuth connect flow
# -------------------------------------------------------------------------

@router.get("/credentials")
async def check_credentials() -> Dict[str, bool]:
    """Which providers have OAuth client credentials configured."""
    return configured_providers()


@router.get("/{provider}/authorize")
async def authorize(
    provider: str,
    user_id: str,
    shop: Optional[str] = None,
    client: httpx.AsyncClient = Depends(get_http_client),
    session: AsyncSession = Depends(get_db),
) -> Dict[str, str]:
    url = OAuthService(session, client).authorization_url(provider, user_id, shop=shop)
    return {"authorization_url": url}


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    shop: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    client: httpx.AsyncClient = Depends(get_http_client),
    session: AsyncSession = Depends(get_db),
):
    """Finish the OAuth dance and send the browser back to the dashboard."""
    provider = normalize_provider(provider)

    if error:
        logger.error(f"{provider} OAuth error: {error} {error_description or ''}")
        return _callback_failure(provider, "oauth_failed", error_description or error)
    if not code or (provider == "shopify" and not shop):
        return _callback_failure(provider, "missing_params")

    try:
        token = await OAuthService(session, client).complete_authorization(provider, code, state, shop=shop)
    except InvalidRequest as e:
        return _callback_failure(provider, "missing_params", e.message)
    except Unauthorized as e:
        return _callback_failure(provider, "invalid_session", e.message)
    except StorageError as e:
        logger.error(f"Error storing {provider} OAuth token: {e.message}")
        return _callback_failure(provider, "database_error", e.message)
    except IntegrationError as e:
        logger.error(f"{provider} OAuth callback error: {e.message}")
        return _callback_failure(provider, "callback_failed", e.message)

    if provider == "hubspot":
        return _hubspot_popup(
            "HUBSPOT_OAUTH_SUCCESS",
            {"provider": provider, "portal_id": token.store_identifier},
        )
    return RedirectResponse(_frontend_url(success="connected", provider=provider))


def _frontend_url(**params: str) -> str:
    return f"{FRONTEND_URL.rstrip('/')}/integrations?{up.urlencode(params)}"


def _callback_failure(provider: str, reason: str, details: Optional[str] = None):
    if provider == "hubspot":
        return _hubspot_popup(
            "HUBSPOT_OAUTH_ERROR",
            {"provider": provider, "error": reason, "details": details},
        )
    return RedirectResponse(_frontend_url(error=reason, provider=provider))


def _hubspot_popup(message_type: str, payload: Dict[str, Any]) -> HTMLResponse:
    """HubSpot connects in a popup: notify the opener window and close."""
    message = json.dumps({"type": message_type, **payload}).replace("</", "<\\/")
    target = json.dumps(FRONTEND_URL)
    html = f"""<!DOCTYPE html>
<html>
  <head><title>HubSpot</title></head>
  <body>
    <script>
      if (window.opener) {{
        window.opener.postMessage({message}, {target});
      }}
      window.close();
    </script>
  </body>
</html>"""
    return HTMLResponse(content=html)


# -------------------------------------------------------------------------
# Dashboard operations on a connected integration
# -------------------------------------------------------------------------

@router.post("/refresh-token", response_model=TokenRefreshResponse)
async def refresh_token(
    request: IntegrationRequest,
    caller_id: str = Depends(get_current_user_id),
    client: httpx.AsyncClient = Depends(get_http_client),
    session: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Return a usable access token, refreshing it when it expires soon."""
    _require_caller(request.userId, caller_id)
    token = await TokenStore(session).get_by_id(request.integrationId, request.userId)
    result = await TokenService(session, client).ensure_valid(request.userId, token.provider)
    return {"accessToken": result.access_token, "refreshed": result.refreshed}


@router.post("/sync", response_model=SyncResponse)
async def sync_integration(
    request: IntegrationRequest,
    client: httpx.AsyncClient = Depends(get_http_client),
    session: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    token = await TokenStore(session).get_by_id(request.integrationId, request.userId)
    result = await SyncService(session, client).sync_all(request.userId, token.provider)
    return result.to_dict()


@router.get("/{user_id}", response_model=List[ConnectedIntegration])
async def list_integrations(
    user_id: str,
    caller_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db),
):
    """Connected providers for a user, without token material."""
    _require_caller(user_id, caller_id)
    return await TokenStore(session).list_tokens(user_id)


def _require_caller(user_id: str, caller_id: str) -> None:
    if user_id != caller_id:
        logger.warning(f"User {caller_id} requested integrations of user {user_id}")
        raise Unauthorized("Session does not belong to the requested user")
