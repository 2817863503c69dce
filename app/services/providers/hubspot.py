from __future__ import annotations

import logging
import urllib.parse as up
from typing import Any, Dict, List, Optional

from app.models.oauth_token import OAuthToken
from app.services.providers.base import (AccountInfo, ProviderAdapter,
                                         RegistrationResult, TokenGrant,
                                         full_name, to_float)

# Base HubSpot API URL (v3 CRM + OAuth endpoints)
HUBSPOT_BASE_URL = "https://api.hubapi.com"
HUBSPOT_TOKEN_URL = f"{HUBSPOT_BASE_URL}/oauth/v1/token"
HUBSPOT_AUTHORIZE_URL = "https://app.hubspot.com/oauth/authorize"

HUBSPOT_SCOPES = ["contacts", "crm.objects.deals.read", "crm.objects.companies.read"]

CONTACT_PROPERTIES = [
    "email",
    "firstname",
    "lastname",
    "phone",
    "company",
    "jobtitle",
    "lifecyclestage",
    "hs_lead_source",
    "createdate",
    "lastmodifieddate",
]

DEAL_PROPERTIES = [
    "dealname",
    "amount",
    "dealstage",
    "closedate",
    "createdate",
    "pipeline",
    "dealtype",
]

# HubSpot subscriptions are per property, not per event
WEBHOOK_PROPERTIES = ["email"]

SUBSCRIPTION_TYPES = {
    "contact.propertyChange": "contact.propertyChange",
    "deal.stageChange": "deal.propertyChange",
    "company.creation": "company.creation",
    "contact.deletion": "contact.deletion",
}

logger = logging.getLogger(__name__)


class HubSpotAdapter(ProviderAdapter):
    name = "hubspot"
    page_size = 100

    def authorization_url(self, state: str, shop: Optional[str] = None) -> str:
        creds = self._require_credentials()
        qs = up.urlencode({
            "client_id": creds.client_id,
            "redirect_uri": creds.redirect_uri,
            "scope": " ".join(HUBSPOT_SCOPES),
            "state": state,
        })
        return f"{HUBSPOT_AUTHORIZE_URL}?{qs}"

    async def exchange_code(self, code: str, shop: Optional[str] = None) -> TokenGrant:
        creds = self._require_credentials()
        return await self._token_request({
            "grant_type": "authorization_code",
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
            "redirect_uri": creds.redirect_uri,
            "code": code,
        })

    async def fetch_account(self, grant: TokenGrant, shop: Optional[str] = None) -> AccountInfo:
        response = await self.client.get(
            f"{HUBSPOT_BASE_URL}/oauth/v1/access-tokens/{grant.access_token}",
            headers=self._headers(grant.access_token),
        )
        response.raise_for_status()
        info = response.json()
        hub_id = info.get("hub_id")
        return AccountInfo(
            store_identifier=str(hub_id) if hub_id is not None else None,
            details={
                "portal_id": hub_id,
                "hub_domain": info.get("hub_domain"),
                "scopes": info.get("scopes", []),
            },
        )

    async def refresh(self, token: OAuthToken) -> TokenGrant:
        creds = self._require_credentials()
        return await self._token_request({
            "grant_type": "refresh_token",
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
            "refresh_token": token.refresh_token,
        })

    async def fetch_contacts(self, token: OAuthToken, max_pages: int = 1) -> List[Dict[str, Any]]:
        return await self._list_objects(token, "contacts", CONTACT_PROPERTIES, max_pages)

    async def fetch_deals(self, token: OAuthToken, max_pages: int = 1) -> List[Dict[str, Any]]:
        return await self._list_objects(token, "deals", DEAL_PROPERTIES, max_pages)

    def map_contact(self, record: Dict[str, Any]) -> Dict[str, Any]:
        props = record.get("properties") or {}
        return {
            "external_id": str(record["id"]),
            "name": full_name(props.get("firstname"), props.get("lastname")) or props.get("email"),
            "data": {
                "email": props.get("email"),
                "first_name": props.get("firstname"),
                "last_name": props.get("lastname"),
                "phone": props.get("phone"),
                "company": props.get("company"),
                "job_title": props.get("jobtitle"),
                "lifecycle_stage": props.get("lifecyclestage"),
                "lead_source": props.get("hs_lead_source"),
                "created_at": props.get("createdate"),
                "updated_at": props.get("lastmodifieddate"),
                "raw": record,
            },
        }

    def map_deal(self, record: Dict[str, Any]) -> Dict[str, Any]:
        props = record.get("properties") or {}
        return {
            "external_id": str(record["id"]),
            "name": props.get("dealname"),
            "data": {
                "deal_name": props.get("dealname"),
                "amount": to_float(props.get("amount")),
                "stage": props.get("dealstage"),
                "close_date": props.get("closedate"),
                "pipeline": props.get("pipeline"),
                "deal_type": props.get("dealtype"),
                "created_at": props.get("createdate"),
                "raw": record,
            },
        }

    async def register_webhook(
        self, token: OAuthToken, events: List[str], webhook_url: str, secret: str
    ) -> RegistrationResult:
        subscription_ids = []
        for property_name in WEBHOOK_PROPERTIES:
            response = await self.client.post(
                f"{HUBSPOT_BASE_URL}/webhooks/v3/subscriptions",
                headers=self._headers(token.access_token),
                json={
                    "eventType": "contact.propertyChange",
                    "propertyName": property_name,
                    "active": True,
                },
            )
            response.raise_for_status()
            subscription_ids.append(str(response.json().get("id")))

        return RegistrationResult(
            success=True,
            webhook_id=",".join(subscription_ids),
            details={
                "subscription_types": [SUBSCRIPTION_TYPES.get(e, e) for e in events],
                "subscribed_properties": list(WEBHOOK_PROPERTIES),
            },
        )

    async def _token_request(self, data: Dict[str, Any]) -> TokenGrant:
        response = await self.client.post(
            HUBSPOT_TOKEN_URL,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        response.raise_for_status()
        return TokenGrant.from_payload(response.json())

    async def _list_objects(
        self, token: OAuthToken, object_type: str, properties: List[str], max_pages: int
    ) -> List[Dict[str, Any]]:
        """List CRM objects, following ``paging.next.after`` for up to *max_pages*."""
        records: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {
            "limit": self.page_size,
            "properties": ",".join(properties),
        }

        for _ in range(max(max_pages, 1)):
            response = await self.client.get(
                f"{HUBSPOT_BASE_URL}/crm/v3/objects/{object_type}",
                params=params,
                headers=self._headers(token.access_token),
            )
            response.raise_for_status()
            data = response.json()
            records.extend(data.get("results", []))

            paging = data.get("paging")
            if paging and paging.get("next"):
                params["after"] = paging["next"]["after"]
            else:
                break

        logger.debug(f"Fetched {len(records)} HubSpot {object_type}")
        return records

    @staticmethod
    def _headers(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}
