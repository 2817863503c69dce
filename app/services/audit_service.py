from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.integration_log import IntegrationLog, WebhookRegistrationLog


def log_integration_action(
    session: AsyncSession,
    user_id: str,
    provider: str,
    action: str,
    status: str,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> IntegrationLog:
    """Stage an integration_logs row; the caller's commit persists it."""
    entry = IntegrationLog(
        user_id=user_id,
        provider=provider,
        action=action,
        status=status,
        message=message,
        details=details,
    )
    session.add(entry)
    return entry


def log_webhook_registration(
    session: AsyncSession,
    webhook_config_id: UUID,
    provider: str,
    action: str,
    success: bool,
    response_data: Optional[Dict[str, Any]] = None,
) -> WebhookRegistrationLog:
    entry = WebhookRegistrationLog(
        webhook_config_id=webhook_config_id,
        provider=provider,
        action=action,
        success=success,
        response_data=response_data,
    )
    session.add(entry)
    return entry
