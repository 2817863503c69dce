from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import SYNC_MAX_PAGES
from app.db import utcnow
from app.exceptions import StorageError
from app.models.oauth_token import OAuthToken
from app.models.synced_entity import SyncedEntity
from app.services.audit_service import log_integration_action
from app.services.providers.base import ProviderAdapter
from app.services.providers.registry import get_adapter, normalize_provider
from app.services.token_service import TokenService

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("contact", "deal")


@dataclass
class SyncResult:
    provider: str
    contacts_synced: int = 0
    deals_synced: int = 0
    errors: Optional[Dict[str, str]] = None
    synced_at: Optional[Any] = None
    duration_seconds: float = 0.0

    @property
    def total_synced(self) -> int:
        return self.contacts_synced + self.deals_synced

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contacts": self.contacts_synced,
            "deals": self.deals_synced,
            "total_synced": self.total_synced,
            "last_sync_at": self.synced_at.isoformat() + "Z" if self.synced_at else None,
        }


class SyncService:
    """Mirrors one page (or ``max_pages``) of contacts and deals per provider.

    Each resource type is an independent snapshot keyed by
    (user, provider, entity_type): a failing fetch leaves the previous snapshot
    in place, a successful one replaces it by delete-then-insert. Overlapping
    syncs for the same key are not serialised.
    """

    def __init__(
        self,
        session: AsyncSession,
        client: httpx.AsyncClient,
        max_pages: Optional[int] = None,
    ) -> None:
        self.session = session
        self.client = client
        self.max_pages = max_pages or SYNC_MAX_PAGES
        self.token_service = TokenService(session, client)

    async def sync_all(self, user_id: str, provider: str) -> SyncResult:
        provider = normalize_provider(provider)
        start_time = time.time()

        # Auth failure is fatal for the whole sync
        token_result = await self.token_service.ensure_valid(user_id, provider)
        token = token_result.token
        adapter = get_adapter(provider, self.client)

        logger.info(f"Starting {provider} sync for user {user_id}")
        contacts, deals = await asyncio.gather(
            self._fetch(adapter, token, "contact"),
            self._fetch(adapter, token, "deal"),
        )

        result = SyncResult(provider=provider, errors={})
        for entity_type, fetched in (("contact", contacts), ("deal", deals)):
            if isinstance(fetched, str):
                result.errors[entity_type] = fetched
                continue
            count = await self._replace_snapshot(adapter, user_id, entity_type, fetched)
            if entity_type == "contact":
                result.contacts_synced = count
            else:
                result.deals_synced = count

        result.synced_at = utcnow()
        result.duration_seconds = round(time.time() - start_time, 3)
        await self._finish(token, user_id, result)
        logger.info(
            f"{provider} sync for user {user_id} finished: "
            f"{result.contacts_synced} contacts, {result.deals_synced} deals"
        )
        return result

    async def _fetch(self, adapter: ProviderAdapter, token: OAuthToken, entity_type: str) -> List[Dict[str, Any]] | str:
        """Fetch one resource type. Returns the error text instead of raising."""
        fetch = adapter.fetch_contacts if entity_type == "contact" else adapter.fetch_deals
        try:
            return await fetch(token, max_pages=self.max_pages)
        except httpx.HTTPStatusError as e:
            logger.error(
                f"{adapter.name} {entity_type} fetch failed: {e.response.status_code} {e.response.text[:200]}"
            )
            return f"HTTP {e.response.status_code}"
        except httpx.TransportError as e:
            logger.error(f"{adapter.name} {entity_type} fetch failed: {e}")
            return str(e) or e.__class__.__name__
        except (ValueError, KeyError, TypeError) as e:
            # 2xx reply that is not the JSON shape the provider documents
            logger.error(f"{adapter.name} {entity_type} fetch returned an unexpected response: {e!r}")
            return "Unexpected response"

    async def _replace_snapshot(
        self, adapter: ProviderAdapter, user_id: str, entity_type: str, records: List[Dict[str, Any]]
    ) -> int:
        mapper = adapter.map_contact if entity_type == "contact" else adapter.map_deal

        # Last write wins when a provider repeats a record across pages
        rows: Dict[str, Dict[str, Any]] = {}
        skipped = 0
        for record in records:
            try:
                mapped = mapper(record)
            except (KeyError, TypeError, AttributeError):
                skipped += 1
                continue
            rows[mapped["external_id"]] = mapped
        if skipped:
            logger.warning(f"Skipped {skipped} {adapter.name} {entity_type} record(s) missing an id")

        try:
            await self.session.execute(
                delete(SyncedEntity).where(
                    SyncedEntity.user_id == user_id,
                    SyncedEntity.provider == adapter.name,
                    SyncedEntity.entity_type == entity_type,
                )
            )
            self.session.add_all([
                SyncedEntity(
                    user_id=user_id,
                    provider=adapter.name,
                    entity_type=entity_type,
                    external_id=row["external_id"],
                    name=row["name"],
                    data=row["data"],
                )
                for row in rows.values()
            ])
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to store synced {entity_type}s: {e}") from e

        return len(rows)

    async def _finish(self, token: OAuthToken, user_id: str, result: SyncResult) -> None:
        token.last_synced_at = result.synced_at
        log_integration_action(
            self.session,
            user_id,
            result.provider,
            action="manual_sync",
            status="partial" if result.errors else "success",
            message=f"Manual sync completed: {result.total_synced} records",
            details={**result.to_dict(), "errors": result.errors or None},
        )
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to record sync: {e}") from e
