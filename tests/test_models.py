from __future__ import annotations

import datetime as dt
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import as_utc, utcnow
from app.exceptions import TokenNotFound
from app.models.oauth_token import OAuthToken
from app.models.synced_entity import SyncedEntity
from app.services.token_store import TokenStore


class TestTokenStore:
    """OAuth token persistence."""

    @pytest.mark.asyncio
    async def test_put_token_inserts_then_updates(self, db_session: AsyncSession, sample_user_id: str):
        store = TokenStore(db_session)

        created = await store.put_token(
            sample_user_id, "hubspot", access_token="a1", refresh_token="r1", store_identifier="111"
        )
        created_at = created.created_at

        updated = await store.put_token(sample_user_id, "hubspot", access_token="a2", refresh_token="r2")

        assert updated.id == created.id
        assert updated.access_token == "a2"
        assert updated.refresh_token == "r2"
        assert updated.created_at == created_at
        assert updated.updated_at >= created_at
        rows = (await db_session.execute(select(OAuthToken))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_put_token_ignores_unknown_fields(self, db_session: AsyncSession, sample_user_id: str):
        token = await TokenStore(db_session).put_token(
            sample_user_id, "shopify", access_token="a1", provider_name="ignored", last_synced_at=utcnow()
        )
        assert token.user_id == sample_user_id
        assert token.last_synced_at is None

    @pytest.mark.asyncio
    async def test_get_token_missing(self, db_session: AsyncSession, sample_user_id: str):
        with pytest.raises(TokenNotFound):
            await TokenStore(db_session).get_token(sample_user_id, "hubspot")

    @pytest.mark.asyncio
    async def test_get_by_id_is_scoped_to_user(self, db_session: AsyncSession, make_token, sample_user_id: str):
        token = await make_token(sample_user_id)
        store = TokenStore(db_session)

        assert (await store.get_by_id(token.id, sample_user_id)).id == token.id
        with pytest.raises(TokenNotFound):
            await store.get_by_id(token.id, "other-user")
        with pytest.raises(TokenNotFound):
            await store.get_by_id(uuid.uuid4(), sample_user_id)

    @pytest.mark.asyncio
    async def test_list_tokens(self, db_session: AsyncSession, make_token, sample_user_id: str):
        await make_token(sample_user_id, provider="shopify", expires_in=None)
        await make_token(sample_user_id, provider="hubspot")
        await make_token("other-user", provider="salesforce")

        tokens = await TokenStore(db_session).list_tokens(sample_user_id)

        assert [t.provider for t in tokens] == ["hubspot", "shopify"]


class TestSyncedEntityModel:

    @pytest.mark.asyncio
    async def test_entity_key_is_unique(self, db_session: AsyncSession, sample_user_id: str):
        for _ in range(2):
            db_session.add(SyncedEntity(
                user_id=sample_user_id, provider="hubspot", entity_type="contact", external_id="1", data={},
            ))
        with pytest.raises(IntegrityError):
            await db_session.commit()


def test_as_utc_normalises_aware_timestamps():
    aware = dt.datetime(2025, 1, 1, 12, 0, tzinfo=dt.timezone(dt.timedelta(hours=2)))
    assert as_utc(aware) == dt.datetime(2025, 1, 1, 10, 0)
    assert as_utc(None) is None
