from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_current_user_id
from app.db import get_db
from app.http_client import get_http_client
from app.models.webhook_config import WebhookConfig
from app.schemas.webhook import WebhookRegistrationRequest
from app.services.webhook_health import DEFAULT_TIME_RANGE, WebhookStatusService
from app.services.webhook_registry import WebhookRegistry

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


def _config_dict(config: WebhookConfig) -> Dict[str, Any]:
    return {
        "id": str(config.id),
        "provider": config.provider,
        "events": config.events,
        "webhook_url": config.webhook_url,
        "rate_limit": config.rate_limit,
        "timeout_ms": config.timeout_ms,
        "retry_attempts": config.retry_attempts,
        "active": config.active,
        "registration_status": config.registration_status,
        "external_webhook_id": config.external_webhook_id,
        "created_at": config.created_at.isoformat() if config.created_at else None,
    }


@router.post("/register")
async def register_webhook(
    request: WebhookRegistrationRequest,
    user_id: str = Depends(get_current_user_id),
    client: httpx.AsyncClient = Depends(get_http_client),
    session: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Create or update the caller's webhook for a provider.

    Succeeds even when the provider rejects the subscription; inspect
    ``registration_result`` and ``registration_status`` for that outcome.
    """
    config, result, created = await WebhookRegistry(session, client).register_webhook(
        user_id,
        request.provider,
        request.events,
        webhook_url=request.webhook_url,
        secret=request.secret,
        rate_limit=request.rate_limit,
        timeout_ms=request.timeout_ms,
        retry_attempts=request.retry_attempts,
        ip_whitelist=request.ip_whitelist,
    )
    return {
        "success": True,
        "message": f"Webhook {'registered' if created else 'updated'} successfully",
        "webhook_config": _config_dict(config),
        "registration_result": result.to_dict(),
    }


@router.get("/status")
async def webhook_status(
    provider: Optional[str] = Query(None, description="Filter by provider"),
    time_range: str = Query(DEFAULT_TIME_RANGE, description="1h, 6h, 12h, 24h, 7d or 30d"),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Health and delivery statistics for the caller's webhooks."""
    return await WebhookStatusService(session).get_status(user_id, provider=provider, time_range=time_range)
