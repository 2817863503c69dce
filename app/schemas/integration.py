from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel


class IntegrationRequest(BaseModel):
    """Body of the dashboard's refresh-token and sync calls."""

    integrationId: UUID
    userId: str


class TokenRefreshResponse(BaseModel):
    accessToken: str
    refreshed: bool


class ProviderSyncRequest(BaseModel):
    user_id: str
    integration_id: Optional[UUID] = None


class SyncResponse(BaseModel):
    contacts: int
    deals: int
    total_synced: int
    last_sync_at: Optional[str] = None


class ConnectedIntegration(BaseModel):
    """A stored token as shown to the dashboard; secrets are never included."""

    id: UUID
    provider: str
    store_identifier: Optional[str] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    account_details: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
