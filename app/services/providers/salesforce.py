from __future__ import annotations

import logging
import urllib.parse as up
from typing import Any, Dict, List, Optional

from app.exceptions import InvalidRequest
from app.models.oauth_token import OAuthToken
from app.services.providers.base import (AccountInfo, ProviderAdapter,
                                         RegistrationResult, TokenGrant,
                                         full_name, to_float)

SALESFORCE_LOGIN_URL = "https://login.salesforce.com"
SALESFORCE_API_VERSION = "v59.0"
SALESFORCE_SCOPES = ["api", "refresh_token"]

# Token responses carry no expires_in; sessions default to two hours
SALESFORCE_SESSION_SECONDS = 7200

CONTACT_QUERY = (
    "SELECT Id, FirstName, LastName, Email, Phone, Title, Account.Name "
    "FROM Contact ORDER BY LastModifiedDate DESC LIMIT {limit}"
)
OPPORTUNITY_QUERY = (
    "SELECT Id, Name, Amount, StageName, CloseDate, Probability, Account.Name "
    "FROM Opportunity ORDER BY LastModifiedDate DESC LIMIT {limit}"
)

logger = logging.getLogger(__name__)


class SalesforceAdapter(ProviderAdapter):
    name = "salesforce"
    page_size = 100

    def authorization_url(self, state: str, shop: Optional[str] = None) -> str:
        creds = self._require_credentials()
        qs = up.urlencode({
            "response_type": "code",
            "client_id": creds.client_id,
            "redirect_uri": creds.redirect_uri,
            "scope": " ".join(SALESFORCE_SCOPES),
            "state": state,
        })
        return f"{SALESFORCE_LOGIN_URL}/services/oauth2/authorize?{qs}"

    async def exchange_code(self, code: str, shop: Optional[str] = None) -> TokenGrant:
        creds = self._require_credentials()
        return await self._token_request(
            f"{SALESFORCE_LOGIN_URL}/services/oauth2/token",
            {
                "grant_type": "authorization_code",
                "client_id": creds.client_id,
                "client_secret": creds.client_secret,
                "redirect_uri": creds.redirect_uri,
                "code": code,
            },
        )

    async def fetch_account(self, grant: TokenGrant, shop: Optional[str] = None) -> AccountInfo:
        instance_url = grant.raw.get("instance_url")
        if not instance_url:
            raise InvalidRequest("Salesforce token response did not include an instance_url")
        response = await self.client.get(
            f"{instance_url}/services/oauth2/userinfo",
            headers=self._headers(grant.access_token),
        )
        response.raise_for_status()
        info = response.json()
        organization = info.get("organization") or {}
        return AccountInfo(
            store_identifier=instance_url,
            details={
                "instance_url": instance_url,
                "org_id": info.get("organization_id"),
                "org_name": organization.get("name"),
                "org_type": organization.get("org_type"),
            },
        )

    async def refresh(self, token: OAuthToken) -> TokenGrant:
        creds = self._require_credentials()
        instance_url = token.store_identifier or SALESFORCE_LOGIN_URL
        return await self._token_request(
            f"{instance_url}/services/oauth2/token",
            {
                "grant_type": "refresh_token",
                "client_id": creds.client_id,
                "client_secret": creds.client_secret,
                "refresh_token": token.refresh_token,
            },
        )

    async def fetch_contacts(self, token: OAuthToken, max_pages: int = 1) -> List[Dict[str, Any]]:
        return await self._query(token, CONTACT_QUERY, max_pages)

    async def fetch_deals(self, token: OAuthToken, max_pages: int = 1) -> List[Dict[str, Any]]:
        return await self._query(token, OPPORTUNITY_QUERY, max_pages)

    def map_contact(self, record: Dict[str, Any]) -> Dict[str, Any]:
        account = record.get("Account") or {}
        return {
            "external_id": str(record["Id"]),
            "name": full_name(record.get("FirstName"), record.get("LastName")) or record.get("Email"),
            "data": {
                "email": record.get("Email"),
                "first_name": record.get("FirstName"),
                "last_name": record.get("LastName"),
                "phone": record.get("Phone"),
                "job_title": record.get("Title"),
                "company": account.get("Name"),
                "raw": record,
            },
        }

    def map_deal(self, record: Dict[str, Any]) -> Dict[str, Any]:
        account = record.get("Account") or {}
        return {
            "external_id": str(record["Id"]),
            "name": record.get("Name"),
            "data": {
                "deal_name": record.get("Name"),
                "amount": to_float(record.get("Amount")),
                "stage": record.get("StageName"),
                "close_date": record.get("CloseDate"),
                "probability": record.get("Probability"),
                "company": account.get("Name"),
                "raw": record,
            },
        }

    async def register_webhook(
        self, token: OAuthToken, events: List[str], webhook_url: str, secret: str
    ) -> RegistrationResult:
        # Only the remote site is configured here; Platform Events and the
        # Apex triggers publishing them still have to be set up in the org.
        response = await self.client.post(
            f"{token.store_identifier}/services/data/v58.0/sobjects/RemoteSiteSetting/",
            headers=self._headers(token.access_token),
            json={
                "SiteName": "ROMASHKA_Webhook",
                "EndpointUrl": webhook_url,
                "Description": "ROMASHKA Webhook Endpoint",
                "IsActive": True,
            },
        )
        response.raise_for_status()
        return RegistrationResult(
            success=True,
            webhook_id="salesforce_platform_events",
            details={
                "message": "Salesforce webhook configuration initiated. Manual setup may be required.",
                "setup_required": True,
            },
        )

    async def _token_request(self, url: str, data: Dict[str, Any]) -> TokenGrant:
        response = await self.client.post(
            url,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        response.raise_for_status()
        return TokenGrant.from_payload(response.json(), default_expires_in=SALESFORCE_SESSION_SECONDS)

    async def _query(self, token: OAuthToken, soql: str, max_pages: int) -> List[Dict[str, Any]]:
        """Run a SOQL query, following ``nextRecordsUrl`` for up to *max_pages*."""
        instance_url = token.store_identifier
        pages = max(max_pages, 1)
        response = await self.client.get(
            f"{instance_url}/services/data/{SALESFORCE_API_VERSION}/query/",
            params={"q": soql.format(limit=self.page_size * pages)},
            headers=self._headers(token.access_token),
        )
        response.raise_for_status()
        data = response.json()
        records: List[Dict[str, Any]] = list(data.get("records", []))

        for _ in range(pages - 1):
            next_url = data.get("nextRecordsUrl")
            if not next_url:
                break
            response = await self.client.get(
                f"{instance_url}{next_url}", headers=self._headers(token.access_token)
            )
            response.raise_for_status()
            data = response.json()
            records.extend(data.get("records", []))

        return records

    @staticmethod
    def _headers(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}
