from __future__ import annotations

from typing import Any, Dict

import httpx
from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.exceptions import InvalidRequest
from app.http_client import get_http_client
from app.schemas.integration import ProviderSyncRequest
from app.services.providers.registry import normalize_provider
from app.services.sync_service import SyncService
from app.services.token_store import TokenStore

router = APIRouter(prefix="/api/sync", tags=["Sync"])


@router.post("/{provider}")
async def sync_provider(
    request: ProviderSyncRequest,
    provider: str = Path(..., description="hubspot, shopify or salesforce"),
    client: httpx.AsyncClient = Depends(get_http_client),
    session: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Manually sync contacts and deals for one provider."""
    provider = normalize_provider(provider)

    if request.integration_id is not None:
        token = await TokenStore(session).get_by_id(request.integration_id, request.user_id)
        if token.provider != provider:
            raise InvalidRequest(f"Integration {request.integration_id} is not a {provider} integration")

    result = await SyncService(session, client).sync_all(request.user_id, provider)
    return {
        "success": True,
        "provider": provider,
        **result.to_dict(),
        "errors": result.errors or None,
    }
