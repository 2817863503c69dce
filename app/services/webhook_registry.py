from __future__ import annotations

import logging
import secrets
from typing import List, Optional, Tuple

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import WEBHOOK_BASE_URL
from app.db import utcnow
from app.exceptions import (IntegrationError, InvalidRequest, ProviderUnavailable,
                            StorageError, TokenNotFound)
from app.models.webhook_config import WebhookConfig
from app.services.audit_service import log_webhook_registration
from app.services.providers.base import RegistrationResult
from app.services.providers.registry import get_adapter, normalize_provider
from app.services.token_store import TokenStore

logger = logging.getLogger(__name__)


def generate_webhook_secret() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(32)


def default_webhook_url(provider: str) -> str:
    return f"{WEBHOOK_BASE_URL.rstrip('/')}/api/webhooks/{provider}"


class WebhookRegistry:
    """Persists webhook configuration and registers it with the provider.

    The local row is written first; the provider call is best effort and its
    failure only changes ``registration_status``.
    """

    def __init__(self, session: AsyncSession, client: httpx.AsyncClient) -> None:
        self.session = session
        self.client = client

    async def register_webhook(
        self,
        user_id: str,
        provider: str,
        events: Optional[List[str]],
        webhook_url: Optional[str] = None,
        secret: Optional[str] = None,
        rate_limit: int = 100,
        timeout_ms: int = 30000,
        retry_attempts: int = 3,
        ip_whitelist: Optional[List[str]] = None,
    ) -> Tuple[WebhookConfig, RegistrationResult, bool]:
        """Upsert the (user, provider) config and attempt provider registration.

        Returns the config, the provider registration result and whether the
        config was newly created.
        """
        if not provider or not events or not isinstance(events, list):
            raise InvalidRequest("Missing required fields: provider, events")
        provider = normalize_provider(provider)

        config, created = await self._upsert_config(
            user_id,
            provider,
            events=list(events),
            webhook_url=webhook_url or default_webhook_url(provider),
            secret=secret or generate_webhook_secret(),
            rate_limit=rate_limit,
            timeout_ms=timeout_ms,
            retry_attempts=retry_attempts,
            ip_whitelist=list(ip_whitelist or []),
        )

        result, attempted = await self._register_with_provider(user_id, config)
        if result.success:
            config.registration_status = "registered"
            config.external_webhook_id = result.webhook_id
        elif attempted:
            config.registration_status = "failed"
        else:
            config.registration_status = "pending"

        log_webhook_registration(
            self.session,
            webhook_config_id=config.id,
            provider=provider,
            action="create" if created else "update",
            success=result.success,
            response_data=result.to_dict(),
        )
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to record webhook registration: {e}") from e

        logger.info(
            f"Webhook {'registered' if created else 'updated'} for {provider}, user {user_id}: "
            f"status={config.registration_status}"
        )
        return config, result, created

    async def _upsert_config(self, user_id: str, provider: str, **values) -> Tuple[WebhookConfig, bool]:
        try:
            stmt = select(WebhookConfig).where(
                WebhookConfig.user_id == user_id,
                WebhookConfig.provider == provider,
            )
            config = (await self.session.execute(stmt)).scalar_one_or_none()
            created = config is None

            if created:
                config = WebhookConfig(user_id=user_id, provider=provider, active=True, **values)
                self.session.add(config)
            else:
                for key, value in values.items():
                    setattr(config, key, value)
                config.active = True
                config.updated_at = utcnow()

            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to store webhook config: {e}") from e
        return config, created

    async def _register_with_provider(self, user_id: str, config: WebhookConfig) -> Tuple[RegistrationResult, bool]:
        """Returns the result and whether the provider was actually called."""
        try:
            token = await TokenStore(self.session).get_token(user_id, config.provider)
        except TokenNotFound:
            return RegistrationResult(
                success=False,
                error=f"{config.provider} integration not found. Please connect {config.provider} first.",
            ), False

        adapter = get_adapter(config.provider, self.client)
        try:
            result = await adapter.register_webhook(token, config.events, config.webhook_url, config.secret)
        except httpx.HTTPStatusError as e:
            error = ProviderUnavailable(
                f"{config.provider} API error: {e.response.status_code} - {e.response.text}"
            )
            logger.error(f"Error registering webhook with {config.provider}: {error.message}")
            return RegistrationResult(success=False, error=error.message), True
        except httpx.TransportError as e:
            error = ProviderUnavailable(f"{config.provider} API unreachable: {e}")
            logger.error(f"Error registering webhook with {config.provider}: {error.message}")
            return RegistrationResult(success=False, error=error.message, details={"retryable": True}), True
        except IntegrationError as e:
            logger.error(f"Error registering webhook with {config.provider}: {e.message}")
            return RegistrationResult(success=False, error=e.message), True
        except (ValueError, KeyError, TypeError) as e:
            # 2xx reply that is not the JSON shape the provider documents
            logger.error(f"Unexpected {config.provider} webhook response: {e!r}")
            return RegistrationResult(
                success=False, error=f"{config.provider} API returned an unexpected response"
            ), True

        if not result.success:
            logger.warning(f"{config.provider} webhook registration unsuccessful: {result.error}")
        return result, True
