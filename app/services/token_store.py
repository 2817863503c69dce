from __future__ import annotations

import logging
from typing import Any, Dict, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import utcnow
from app.exceptions import StorageError, TokenNotFound
from app.models.oauth_token import OAuthToken

logger = logging.getLogger(__name__)

# Fields a reconnect or refresh may overwrite
MUTABLE_FIELDS = (
    "access_token",
    "refresh_token",
    "token_type",
    "scope",
    "expires_at",
    "store_identifier",
    "account_details",
)


class TokenStore:
    """Server-side storage of one OAuth token per (user, provider)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_token(self, user_id: str, provider: str) -> OAuthToken:
        stmt = select(OAuthToken).where(
            OAuthToken.user_id == user_id,
            OAuthToken.provider == provider,
        )
        token = await self._scalar(stmt)
        if token is None:
            raise TokenNotFound(user_id, provider)
        return token

    async def get_by_id(self, token_id: UUID, user_id: str) -> OAuthToken:
        stmt = select(OAuthToken).where(
            OAuthToken.id == token_id,
            OAuthToken.user_id == user_id,
        )
        token = await self._scalar(stmt)
        if token is None:
            raise TokenNotFound(user_id)
        return token

    async def list_tokens(self, user_id: str) -> List[OAuthToken]:
        stmt = select(OAuthToken).where(OAuthToken.user_id == user_id).order_by(OAuthToken.provider)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list tokens: {e}") from e
        return list(result.scalars().all())

    async def put_token(self, user_id: str, provider: str, **fields: Any) -> OAuthToken:
        """Insert or replace the token for (user, provider).

        Only fields named in ``MUTABLE_FIELDS`` are written; ``created_at`` of an
        existing row is left untouched.
        """
        values: Dict[str, Any] = {k: v for k, v in fields.items() if k in MUTABLE_FIELDS}
        try:
            stmt = select(OAuthToken).where(
                OAuthToken.user_id == user_id,
                OAuthToken.provider == provider,
            )
            token = (await self.session.execute(stmt)).scalar_one_or_none()

            if token is None:
                token = OAuthToken(user_id=user_id, provider=provider, **values)
                self.session.add(token)
            else:
                for key, value in values.items():
                    setattr(token, key, value)
                token.updated_at = utcnow()

            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to store {provider} token: {e}") from e

        logger.info(f"Stored {provider} token for user {user_id}")
        return token

    async def _scalar(self, stmt) -> OAuthToken | None:
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load token: {e}") from e
        return result.scalar_one_or_none()
