from __future__ import annotations

import urllib.parse as up
import uuid

import httpx
import pytest
from sqlalchemy import select

from app import db
from app.api import integrations as integrations_api
from app.models.integration_log import IntegrationLog
from app.models.oauth_token import OAuthToken
from app.services.connection_service import ConnectionService
from app.services.providers.hubspot import HUBSPOT_TOKEN_URL

HUBSPOT_CONTACTS = "https://api.hubapi.com/crm/v3/objects/contacts"
HUBSPOT_DEALS = "https://api.hubapi.com/crm/v3/objects/deals"
HUBSPOT_SUBSCRIPTIONS = "https://api.hubapi.com/webhooks/v3/subscriptions"
SHOPIFY_TOKEN_URL = "https://test-shop.myshopify.com/admin/oauth/access_token"
SHOPIFY_SHOP = "https://test-shop.myshopify.com/admin/api/2023-07/shop.json"


class TestHealthEndpoints:

    @pytest.mark.asyncio
    async def test_health_check(self, api_client):
        response = await api_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_credentials_report(self, api_client, monkeypatch):
        monkeypatch.delenv("SALESFORCE_CLIENT_SECRET")

        response = await api_client.get("/api/integrations/credentials")

        assert response.status_code == 200
        assert response.json() == {"hubspot": True, "shopify": True, "salesforce": False}


class TestTokenRefreshEndpoint:

    @pytest.mark.asyncio
    async def test_valid_token_not_refreshed(self, api_client, auth_headers, make_token, sample_user_id):
        token = await make_token(sample_user_id)

        response = await api_client.post(
            "/api/integrations/refresh-token",
            json={"integrationId": str(token.id), "userId": sample_user_id},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"accessToken": "stored-access-token", "refreshed": False}

    @pytest.mark.asyncio
    async def test_expiring_token_refreshed(self, api_client, auth_headers, provider_api, make_token, sample_user_id):
        token = await make_token(sample_user_id, expires_in=30)
        provider_api.add("POST", HUBSPOT_TOKEN_URL, json={"access_token": "new-access", "expires_in": 1800})

        response = await api_client.post(
            "/api/integrations/refresh-token",
            json={"integrationId": str(token.id), "userId": sample_user_id},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"accessToken": "new-access", "refreshed": True}

    @pytest.mark.asyncio
    async def test_refresh_rejected_by_provider(self, api_client, auth_headers, provider_api, make_token, sample_user_id):
        token = await make_token(sample_user_id, expires_in=30)
        provider_api.add("POST", HUBSPOT_TOKEN_URL, status_code=400, text="invalid_grant")

        response = await api_client.post(
            "/api/integrations/refresh-token",
            json={"integrationId": str(token.id), "userId": sample_user_id},
            headers=auth_headers,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Token refresh failed"
        assert body["details"]["body"] == "invalid_grant"

    @pytest.mark.asyncio
    async def test_unknown_integration_is_404(self, api_client, auth_headers, sample_user_id):
        response = await api_client.post(
            "/api/integrations/refresh-token",
            json={"integrationId": str(uuid.uuid4()), "userId": sample_user_id},
            headers=auth_headers,
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_other_users_integration_is_404(self, api_client, auth_headers, make_token, sample_user_id):
        token = await make_token("someone-else")
        response = await api_client.post(
            "/api/integrations/refresh-token",
            json={"integrationId": str(token.id), "userId": sample_user_id},
            headers=auth_headers,
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_session(self, api_client, make_token, sample_user_id):
        token = await make_token(sample_user_id)
        response = await api_client.post(
            "/api/integrations/refresh-token",
            json={"integrationId": str(token.id), "userId": sample_user_id},
        )
        assert response.status_code == 401
        assert "accessToken" not in response.json()

    @pytest.mark.asyncio
    async def test_session_must_match_user(self, api_client, auth_headers, make_token):
        token = await make_token("someone-else")
        response = await api_client.post(
            "/api/integrations/refresh-token",
            json={"integrationId": str(token.id), "userId": "someone-else"},
            headers=auth_headers,
        )
        assert response.status_code == 401
        assert "accessToken" not in response.json()

    @pytest.mark.asyncio
    async def test_missing_parameters_is_400(self, api_client, auth_headers):
        response = await api_client.post(
            "/api/integrations/refresh-token", json={"userId": "u1"}, headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestSyncEndpoints:

    @pytest.mark.asyncio
    async def test_partial_failure_still_succeeds(self, api_client, provider_api, make_token, sample_user_id):
        token = await make_token(sample_user_id)
        provider_api.add("GET", HUBSPOT_CONTACTS, json={"results": [{"id": "1", "properties": {}}]})
        provider_api.add("GET", HUBSPOT_DEALS, status_code=500, text="upstream down")

        response = await api_client.post(
            "/api/integrations/sync",
            json={"integrationId": str(token.id), "userId": sample_user_id},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["contacts"] == 1
        assert body["deals"] == 0
        assert body["total_synced"] == 1
        assert body["last_sync_at"].endswith("Z")

    @pytest.mark.asyncio
    async def test_provider_sync_route(self, api_client, provider_api, make_token, sample_user_id):
        await make_token(sample_user_id)
        provider_api.add("GET", HUBSPOT_CONTACTS, json={"results": []})
        provider_api.add("GET", HUBSPOT_DEALS, json={"results": [{"id": "9", "properties": {"dealname": "Big"}}]})

        response = await api_client.post("/api/sync/HubSpot", json={"user_id": sample_user_id})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["provider"] == "hubspot"
        assert body["deals"] == 1

    @pytest.mark.asyncio
    async def test_provider_sync_rejects_mismatched_integration(self, api_client, make_token, sample_user_id):
        token = await make_token(sample_user_id, provider="salesforce", store_identifier="https://acme.my.salesforce.com")

        response = await api_client.post(
            "/api/sync/hubspot",
            json={"user_id": sample_user_id, "integration_id": str(token.id)},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, api_client, sample_user_id):
        response = await api_client.post("/api/sync/zendesk", json={"user_id": sample_user_id})
        assert response.status_code == 400
        assert "Supported providers" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_sync_without_refresh_token_fails(self, api_client, make_token, sample_user_id):
        await make_token(sample_user_id, refresh_token=None, expires_in=-5)

        response = await api_client.post("/api/sync/hubspot", json={"user_id": sample_user_id})

        assert response.status_code == 400
        assert response.json()["details"]["reconnect"] is True


class TestWebhookEndpoints:

    @pytest.mark.asyncio
    async def test_register_requires_bearer_token(self, api_client):
        response = await api_client.post("/api/webhooks/register", json={"provider": "hubspot", "events": ["a"]})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_register_rejects_unknown_session(self, api_client):
        response = await api_client.post(
            "/api/webhooks/register",
            json={"provider": "hubspot", "events": ["a"]},
            headers={"Authorization": "Bearer forged"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_register_missing_events(self, api_client, auth_headers):
        response = await api_client.post(
            "/api/webhooks/register", json={"provider": "hubspot"}, headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields: provider, events"

    @pytest.mark.asyncio
    async def test_register_then_update(
        self, api_client, provider_api, make_token, sample_user_id, auth_headers
    ):
        await make_token(sample_user_id)
        provider_api.add("POST", HUBSPOT_SUBSCRIPTIONS, json={"id": 77})
        payload = {"provider": "hubspot", "events": ["contact.creation"]}

        first = await api_client.post("/api/webhooks/register", json=payload, headers=auth_headers)
        second = await api_client.post("/api/webhooks/register", json=payload, headers=auth_headers)

        assert first.status_code == 200
        body = first.json()
        assert body["message"] == "Webhook registered successfully"
        assert body["webhook_config"]["registration_status"] == "registered"
        assert body["webhook_config"]["external_webhook_id"] == "77"
        assert "secret" not in body["webhook_config"]
        assert body["registration_result"]["success"] is True

        assert second.json()["message"] == "Webhook updated successfully"
        assert second.json()["webhook_config"]["id"] == body["webhook_config"]["id"]

    @pytest.mark.asyncio
    async def test_status_empty_state(self, api_client, auth_headers):
        response = await api_client.get("/api/webhooks/status", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["webhooks"] == []
        assert body["overall_stats"]["total_webhooks"] == 0

    @pytest.mark.asyncio
    async def test_status_after_registration(
        self, api_client, provider_api, make_token, sample_user_id, auth_headers
    ):
        await make_token(sample_user_id)
        provider_api.add("POST", HUBSPOT_SUBSCRIPTIONS, json={"id": 77})
        await api_client.post(
            "/api/webhooks/register",
            json={"provider": "hubspot", "events": ["contact.creation"]},
            headers=auth_headers,
        )

        response = await api_client.get(
            "/api/webhooks/status", params={"provider": "hubspot", "time_range": "7d"}, headers=auth_headers
        )

        body = response.json()
        assert body["time_range"] == "7d"
        assert body["webhooks"][0]["health_status"] == "healthy"
        assert body["overall_stats"]["health_percentage"] == 100

    @pytest.mark.asyncio
    async def test_status_requires_bearer_token(self, api_client):
        response = await api_client.get("/api/webhooks/status")
        assert response.status_code == 401


class TestOAuthEndpoints:

    @pytest.mark.asyncio
    async def test_authorize_url_carries_user_in_state(self, api_client, sample_user_id):
        response = await api_client.get("/api/integrations/hubspot/authorize", params={"user_id": sample_user_id})

        assert response.status_code == 200
        url = up.urlparse(response.json()["authorization_url"])
        assert url.netloc == "app.hubspot.com"
        assert up.parse_qs(url.query)["state"] == [sample_user_id]

    @pytest.mark.asyncio
    async def test_shopify_authorize_requires_shop(self, api_client, sample_user_id):
        response = await api_client.get("/api/integrations/shopify/authorize", params={"user_id": sample_user_id})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_shopify_callback_redirects_on_success(
        self, api_client, provider_api, db_session, sample_user_id
    ):
        provider_api.add("POST", SHOPIFY_TOKEN_URL, json={"access_token": "shpat_123", "scope": "read_orders"})
        provider_api.add("GET", SHOPIFY_SHOP, json={"shop": {"name": "Test Shop", "currency": "EUR"}})

        response = await api_client.get(
            "/api/integrations/shopify/callback",
            params={"code": "auth-code", "shop": "test-shop.myshopify.com", "state": sample_user_id},
        )

        assert response.status_code == 307
        assert response.headers["location"] == (
            f"{integrations_api.FRONTEND_URL}/integrations?success=connected&provider=shopify"
        )
        token = (await db_session.execute(select(OAuthToken))).scalar_one()
        assert token.user_id == sample_user_id
        assert token.store_identifier == "test-shop"
        assert token.expires_at is None
        assert token.account_details["currency"] == "EUR"

        log = (await db_session.execute(select(IntegrationLog))).scalar_one()
        assert log.action == "oauth_connect"

    @pytest.mark.asyncio
    async def test_shopify_callback_provider_error(self, api_client):
        response = await api_client.get(
            "/api/integrations/shopify/callback",
            params={"error": "access_denied", "error_description": "User declined"},
        )
        assert response.status_code == 307
        assert "error=oauth_failed&provider=shopify" in response.headers["location"]

    @pytest.mark.asyncio
    async def test_callback_without_state_is_invalid_session(self, api_client, provider_api):
        response = await api_client.get(
            "/api/integrations/salesforce/callback", params={"code": "auth-code"}
        )
        assert response.status_code == 307
        assert "error=invalid_session&provider=salesforce" in response.headers["location"]
        assert provider_api.requests == []

    @pytest.mark.asyncio
    async def test_callback_without_code_is_missing_params(self, api_client, sample_user_id):
        response = await api_client.get(
            "/api/integrations/shopify/callback", params={"state": sample_user_id, "shop": "test-shop"}
        )
        assert "error=missing_params" in response.headers["location"]

    @pytest.mark.asyncio
    async def test_hubspot_callback_returns_popup_page(
        self, api_client, provider_api, db_session, sample_user_id
    ):
        provider_api.add("POST", HUBSPOT_TOKEN_URL, json={
            "access_token": "hub-access", "refresh_token": "hub-refresh", "expires_in": 1800,
        })
        provider_api.add(
            "GET", "https://api.hubapi.com/oauth/v1/access-tokens/hub-access",
            json={"hub_id": 12345, "hub_domain": "acme.hubspot.com"},
        )

        response = await api_client.get(
            "/api/integrations/hubspot/callback", params={"code": "auth-code", "state": sample_user_id}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "HUBSPOT_OAUTH_SUCCESS" in response.text
        assert "window.opener.postMessage" in response.text

        token = (await db_session.execute(select(OAuthToken))).scalar_one()
        assert token.store_identifier == "12345"
        assert token.refresh_token == "hub-refresh"
        assert token.expires_at is not None

    @pytest.mark.asyncio
    async def test_hubspot_callback_failure_posts_error(self, api_client, provider_api, sample_user_id):
        provider_api.add("POST", HUBSPOT_TOKEN_URL, status_code=400, text="bad code")

        response = await api_client.get(
            "/api/integrations/hubspot/callback", params={"code": "bad", "state": sample_user_id}
        )

        assert response.status_code == 200
        assert "HUBSPOT_OAUTH_ERROR" in response.text
        assert "callback_failed" in response.text

    @pytest.mark.asyncio
    async def test_list_integrations_hides_secrets(self, api_client, auth_headers, make_token, sample_user_id):
        await make_token(sample_user_id, store_identifier="12345")

        response = await api_client.get(f"/api/integrations/{sample_user_id}", headers=auth_headers)

        assert response.status_code == 200
        [integration] = response.json()
        assert integration["provider"] == "hubspot"
        assert integration["store_identifier"] == "12345"
        assert "access_token" not in integration
        assert "refresh_token" not in integration

    @pytest.mark.asyncio
    async def test_list_integrations_of_another_user_is_401(self, api_client, auth_headers, make_token):
        await make_token("someone-else")

        response = await api_client.get("/api/integrations/someone-else", headers=auth_headers)

        assert response.status_code == 401
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_list_integrations_requires_session(self, api_client, sample_user_id):
        response = await api_client.get(f"/api/integrations/{sample_user_id}")
        assert response.status_code == 401


@pytest.mark.asyncio
async def test_connection_check_reports_unconfigured_supabase(db_session, monkeypatch):
    monkeypatch.setattr(db, "SUPABASE", None)

    def reachable(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302)

    async with httpx.AsyncClient(transport=httpx.MockTransport(reachable)) as client:
        service = ConnectionService(db_session, client)
        results = await service.test_all_connections()

    by_service = {r.service: r for r in results}
    assert by_service["Database"].success is True
    assert by_service["Supabase"].success is False
    assert by_service["HubSpot"].success is True
    summary = service.get_connection_summary(results)
    assert summary["total_tests"] == 5
    assert summary["failed_tests"] == 1
