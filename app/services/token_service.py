from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import TOKEN_REFRESH_BUFFER_MINUTES
from app.db import as_utc, utcnow
from app.exceptions import ProviderUnavailable, RefreshFailed, RefreshTokenMissing
from app.models.oauth_token import OAuthToken
from app.services.audit_service import log_integration_action
from app.services.providers.registry import get_adapter
from app.services.token_store import TokenStore

logger = logging.getLogger(__name__)


@dataclass
class TokenResult:
    access_token: str
    refreshed: bool
    token: OAuthToken


class TokenService:
    """Hands out access tokens that stay usable for at least ``buffer``.

    Concurrent callers are not coordinated: two overlapping requests can both
    see an expiring token and both refresh it.
    """

    def __init__(
        self,
        session: AsyncSession,
        client: httpx.AsyncClient,
        buffer: Optional[dt.timedelta] = None,
    ) -> None:
        self.session = session
        self.client = client
        self.store = TokenStore(session)
        self.buffer = buffer if buffer is not None else dt.timedelta(minutes=TOKEN_REFRESH_BUFFER_MINUTES)

    def needs_refresh(self, token: OAuthToken, now: Optional[dt.datetime] = None) -> bool:
        """True unless the stored expiry is strictly after ``now + buffer``.

        Tokens without an expiry (Shopify offline tokens) never need a refresh.
        """
        expires_at = as_utc(token.expires_at)
        if expires_at is None:
            return False
        now = now or utcnow()
        return not expires_at > now + self.buffer

    async def ensure_valid(self, user_id: str, provider: str) -> TokenResult:
        token = await self.store.get_token(user_id, provider)

        if not self.needs_refresh(token):
            return TokenResult(access_token=token.access_token, refreshed=False, token=token)

        if not token.refresh_token:
            logger.warning(f"No refresh token available for {provider}, user {user_id}")
            raise RefreshTokenMissing(provider)

        logger.info(f"{provider} token for user {user_id} expires soon, refreshing")
        adapter = get_adapter(provider, self.client)
        try:
            grant = await adapter.refresh(token)
        except httpx.HTTPStatusError as e:
            status, body = e.response.status_code, e.response.text
            logger.error(f"{provider} token refresh failed for user {user_id}: {status}")
            await self._log_failure(user_id, provider, f"Token refresh failed: {status}", {"status": status})
            raise RefreshFailed(provider, status, body) from e
        except httpx.TransportError as e:
            logger.error(f"{provider} token endpoint unreachable for user {user_id}: {e}")
            await self._log_failure(user_id, provider, f"Token endpoint unreachable: {e}")
            raise ProviderUnavailable(f"{provider} token endpoint unreachable", details=str(e)) from e

        expires_at = None
        if grant.expires_in is not None:
            expires_at = utcnow() + dt.timedelta(seconds=int(grant.expires_in))
        elif token.expires_at is not None:
            # No lifetime in the grant: an expiring token stays due for refresh
            logger.warning(f"{provider} refresh response had no expires_in, user {user_id}")
            expires_at = utcnow()

        log_integration_action(
            self.session,
            user_id,
            provider,
            action="token_refresh",
            status="success",
            message="Access token refreshed",
            details={"expires_in": grant.expires_in, "rotated": bool(grant.refresh_token)},
        )
        # Providers may omit rotation; keep the stored refresh token then
        token = await self.store.put_token(
            user_id,
            provider,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or token.refresh_token,
            expires_at=expires_at,
        )
        logger.info(f"Successfully refreshed {provider} access token for user {user_id}")
        return TokenResult(access_token=token.access_token, refreshed=True, token=token)

    async def _log_failure(self, user_id: str, provider: str, message: str, details: Optional[dict] = None) -> None:
        log_integration_action(
            self.session, user_id, provider,
            action="token_refresh", status="error", message=message, details=details,
        )
        await self.session.commit()
