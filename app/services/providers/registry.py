from __future__ import annotations

from typing import Dict, Type

import httpx

from app.config import SUPPORTED_PROVIDERS
from app.exceptions import InvalidRequest
from app.services.providers.base import ProviderAdapter
from app.services.providers.hubspot import HubSpotAdapter
from app.services.providers.salesforce import SalesforceAdapter
from app.services.providers.shopify import ShopifyAdapter

ADAPTERS: Dict[str, Type[ProviderAdapter]] = {
    "hubspot": HubSpotAdapter,
    "shopify": ShopifyAdapter,
    "salesforce": SalesforceAdapter,
}


def normalize_provider(provider: str | None) -> str:
    """Lower-case *provider* and reject anything outside the supported set."""
    name = (provider or "").strip().lower()
    if name not in SUPPORTED_PROVIDERS:
        raise InvalidRequest(
            f"Unsupported provider. Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return name


def get_adapter(provider: str, client: httpx.AsyncClient) -> ProviderAdapter:
    """Factory returning the adapter for *provider* bound to *client*."""
    return ADAPTERS[normalize_provider(provider)](client)
