from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import utcnow
from app.exceptions import InvalidRequest, ProviderUnavailable, TokenError, Unauthorized
from app.models.oauth_token import OAuthToken
from app.services.audit_service import log_integration_action
from app.services.providers.registry import get_adapter, normalize_provider
from app.services.token_store import TokenStore

logger = logging.getLogger(__name__)


class OAuthService:
    """Authorization-code flow: build the consent URL, then store the grant.

    The OAuth ``state`` parameter carries the user id.
    """

    def __init__(self, session: AsyncSession, client: httpx.AsyncClient) -> None:
        self.session = session
        self.client = client

    def authorization_url(self, provider: str, user_id: str, shop: Optional[str] = None) -> str:
        if not user_id:
            raise InvalidRequest("Missing user_id")
        adapter = get_adapter(provider, self.client)
        return adapter.authorization_url(state=user_id, shop=shop)

    async def complete_authorization(
        self,
        provider: str,
        code: str,
        state: Optional[str],
        shop: Optional[str] = None,
    ) -> OAuthToken:
        provider = normalize_provider(provider)
        if not code:
            raise InvalidRequest("Missing authorization code")
        if not state:
            raise Unauthorized("Missing OAuth state")
        user_id = state

        adapter = get_adapter(provider, self.client)
        try:
            grant = await adapter.exchange_code(code, shop=shop)
            account = await adapter.fetch_account(grant, shop=shop)
        except httpx.HTTPStatusError as e:
            logger.error(
                f"{provider} authorization failed for user {user_id}: "
                f"{e.response.status_code} {e.response.text[:200]}"
            )
            raise TokenError(
                f"{provider} authorization failed",
                details={"status": e.response.status_code},
            ) from e
        except httpx.TransportError as e:
            logger.error(f"{provider} unreachable during authorization for user {user_id}: {e}")
            raise ProviderUnavailable(f"{provider} unreachable", details=str(e)) from e

        expires_at = None
        if grant.expires_in is not None:
            expires_at = utcnow() + dt.timedelta(seconds=int(grant.expires_in))

        log_integration_action(
            self.session,
            user_id,
            provider,
            action="oauth_connect",
            status="success",
            message=f"{provider} connected successfully",
            details={**account.details, "expires_in": grant.expires_in},
        )
        token = await TokenStore(self.session).put_token(
            user_id,
            provider,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            token_type=grant.token_type,
            scope=grant.scope,
            expires_at=expires_at,
            store_identifier=account.store_identifier,
            account_details=account.details,
        )
        logger.info(f"{provider} connected for user {user_id} ({account.store_identifier})")
        return token
