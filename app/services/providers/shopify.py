from __future__ import annotations

import logging
import re
import urllib.parse as up
from typing import Any, Dict, List, Optional

import httpx

from app.exceptions import InvalidRequest, RefreshFailed
from app.models.oauth_token import OAuthToken
from app.services.providers.base import (AccountInfo, ProviderAdapter,
                                         RegistrationResult, TokenGrant,
                                         full_name, to_float)

SHOPIFY_API_VERSION = "2023-07"
SHOPIFY_WEBHOOK_API_VERSION = "2023-10"
SHOPIFY_SCOPES = ["read_customers", "read_orders", "read_products"]

NEXT_PAGE_RE = re.compile(r'<[^>]*[?&]page_info=([^&>]+)[^>]*>;\s*rel="next"')

logger = logging.getLogger(__name__)


def normalize_shop(shop: Optional[str]) -> str:
    """Strip the ``.myshopify.com`` suffix (and any scheme) from a shop domain."""
    if not shop:
        raise InvalidRequest("Missing Shopify shop domain")
    shop = shop.strip().lower()
    shop = re.sub(r"^https?://", "", shop).rstrip("/")
    return shop.replace(".myshopify.com", "")


def next_page_info(link_header: Optional[str]) -> Optional[str]:
    if not link_header:
        return None
    match = NEXT_PAGE_RE.search(link_header)
    return match.group(1) if match else None


class ShopifyAdapter(ProviderAdapter):
    """Shopify Admin REST API. Offline tokens never expire and have no refresh token."""

    name = "shopify"
    page_size = 50

    def authorization_url(self, state: str, shop: Optional[str] = None) -> str:
        creds = self._require_credentials()
        qs = up.urlencode({
            "client_id": creds.client_id,
            "scope": ",".join(SHOPIFY_SCOPES),
            "redirect_uri": creds.redirect_uri,
            "state": state,
        })
        return f"{self._shop_url(normalize_shop(shop))}/admin/oauth/authorize?{qs}"

    async def exchange_code(self, code: str, shop: Optional[str] = None) -> TokenGrant:
        creds = self._require_credentials()
        response = await self.client.post(
            f"{self._shop_url(normalize_shop(shop))}/admin/oauth/access_token",
            json={
                "client_id": creds.client_id,
                "client_secret": creds.client_secret,
                "code": code,
            },
        )
        response.raise_for_status()
        return TokenGrant.from_payload(response.json())

    async def fetch_account(self, grant: TokenGrant, shop: Optional[str] = None) -> AccountInfo:
        shop_domain = normalize_shop(shop)
        response = await self.client.get(
            f"{self._api_url(shop_domain)}/shop.json",
            headers=self._headers(grant.access_token),
        )
        response.raise_for_status()
        info = response.json().get("shop", {})
        return AccountInfo(
            store_identifier=shop_domain,
            details={
                "shop_domain": shop_domain,
                "shop_name": info.get("name"),
                "email": info.get("email"),
                "currency": info.get("currency"),
                "timezone": info.get("iana_timezone"),
                "country_code": info.get("country_code"),
            },
        )

    async def refresh(self, token: OAuthToken) -> TokenGrant:
        raise RefreshFailed(self.name, 400, "Shopify offline access tokens cannot be refreshed")

    async def fetch_contacts(self, token: OAuthToken, max_pages: int = 1) -> List[Dict[str, Any]]:
        return await self._list(token, "customers", {}, max_pages)

    async def fetch_deals(self, token: OAuthToken, max_pages: int = 1) -> List[Dict[str, Any]]:
        # Orders are the deal equivalent for a store
        return await self._list(token, "orders", {"status": "any"}, max_pages)

    def map_contact(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "external_id": str(record["id"]),
            "name": full_name(record.get("first_name"), record.get("last_name")) or record.get("email"),
            "data": {
                "email": record.get("email"),
                "first_name": record.get("first_name"),
                "last_name": record.get("last_name"),
                "phone": record.get("phone"),
                "orders_count": record.get("orders_count"),
                "total_spent": to_float(record.get("total_spent")),
                "tags": record.get("tags") or "",
                "raw": record,
            },
        }

    def map_deal(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "external_id": str(record["id"]),
            "name": record.get("name") or (
                f"Order {record['order_number']}" if record.get("order_number") else None
            ),
            "data": {
                "order_number": record.get("order_number"),
                "customer_email": record.get("email"),
                "amount": to_float(record.get("total_price")),
                "currency": record.get("currency"),
                "stage": record.get("financial_status"),
                "fulfillment_status": record.get("fulfillment_status"),
                "items": record.get("line_items") or [],
                "raw": record,
            },
        }

    async def register_webhook(
        self, token: OAuthToken, events: List[str], webhook_url: str, secret: str
    ) -> RegistrationResult:
        shop_domain = normalize_shop(token.store_identifier)
        webhook_ids: List[str] = []
        failures: Dict[str, str] = {}

        # One webhook per topic; a rejected topic does not stop the others
        for event in events:
            response = await self.client.post(
                f"{self._shop_url(shop_domain)}/admin/api/{SHOPIFY_WEBHOOK_API_VERSION}/webhooks.json",
                headers=self._headers(token.access_token),
                json={"webhook": {"topic": event, "address": webhook_url, "format": "json"}},
            )
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError:
                logger.error(f"Shopify webhook creation failed for {event}: {response.status_code}")
                failures[event] = response.text
                continue
            webhook_ids.append(str(response.json()["webhook"]["id"]))

        return RegistrationResult(
            success=len(webhook_ids) > 0,
            webhook_id=",".join(webhook_ids) or None,
            error=None if webhook_ids else "No Shopify webhooks could be created",
            details={
                "created_webhooks": len(webhook_ids),
                "total_events": len(events),
                "failed_events": failures,
            },
        )

    async def _list(
        self, token: OAuthToken, resource: str, extra_params: Dict[str, Any], max_pages: int
    ) -> List[Dict[str, Any]]:
        """List a resource, following the ``Link: rel="next"`` cursor for up to *max_pages*."""
        shop_domain = normalize_shop(token.store_identifier)
        records: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {"limit": self.page_size, **extra_params}

        for _ in range(max(max_pages, 1)):
            response = await self.client.get(
                f"{self._api_url(shop_domain)}/{resource}.json",
                params=params,
                headers=self._headers(token.access_token),
            )
            response.raise_for_status()
            records.extend(response.json().get(resource, []))

            page_info = next_page_info(response.headers.get("link"))
            if not page_info:
                break
            # page_info cursors only accept limit alongside them
            params = {"limit": self.page_size, "page_info": page_info}

        logger.debug(f"Fetched {len(records)} Shopify {resource}")
        return records

    @staticmethod
    def _shop_url(shop_domain: str) -> str:
        return f"https://{shop_domain}.myshopify.com"

    def _api_url(self, shop_domain: str) -> str:
        return f"{self._shop_url(shop_domain)}/admin/api/{SHOPIFY_API_VERSION}"

    @staticmethod
    def _headers(access_token: str) -> Dict[str, str]:
        return {"X-Shopify-Access-Token": access_token}
