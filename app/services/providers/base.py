from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.config import ProviderCredentials, get_provider_credentials
from app.exceptions import IntegrationError
from app.models.oauth_token import OAuthToken

logger = logging.getLogger(__name__)


@dataclass
class TokenGrant:
    """Token endpoint response normalised across providers."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None
    expires_in: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], default_expires_in: Optional[int] = None) -> "TokenGrant":
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type"),
            scope=payload.get("scope"),
            expires_in=payload.get("expires_in", default_expires_in),
            raw=payload,
        )


@dataclass
class AccountInfo:
    store_identifier: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RegistrationResult:
    success: bool
    webhook_id: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProviderAdapter(ABC):
    """HTTP surface of one provider: OAuth, resource listing and webhooks.

    Adapters never touch the database. Non-2xx responses surface as
    ``httpx.HTTPStatusError`` and network failures as ``httpx.TransportError``;
    callers decide whether those are fatal.
    """

    name: str = ""
    page_size: int = 100

    def __init__(self, client: httpx.AsyncClient, credentials: Optional[ProviderCredentials] = None) -> None:
        self.client = client
        self.credentials = credentials or get_provider_credentials(self.name)

    def _require_credentials(self) -> ProviderCredentials:
        if not self.credentials.configured:
            raise IntegrationError(f"{self.name} OAuth credentials not configured")
        return self.credentials

    @abstractmethod
    def authorization_url(self, state: str, shop: Optional[str] = None) -> str:
        ...

    @abstractmethod
    async def exchange_code(self, code: str, shop: Optional[str] = None) -> TokenGrant:
        ...

    @abstractmethod
    async def fetch_account(self, grant: TokenGrant, shop: Optional[str] = None) -> AccountInfo:
        ...

    @abstractmethod
    async def refresh(self, token: OAuthToken) -> TokenGrant:
        ...

    @abstractmethod
    async def fetch_contacts(self, token: OAuthToken, max_pages: int = 1) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def fetch_deals(self, token: OAuthToken, max_pages: int = 1) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def map_contact(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``{"external_id", "name", "data"}`` for a contact record."""

    @abstractmethod
    def map_deal(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``{"external_id", "name", "data"}`` for a deal record."""

    @abstractmethod
    async def register_webhook(
        self, token: OAuthToken, events: List[str], webhook_url: str, secret: str
    ) -> RegistrationResult:
        ...


def full_name(first: Optional[str], last: Optional[str]) -> Optional[str]:
    name = " ".join(part for part in (first, last) if part)
    return name or None


def to_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
