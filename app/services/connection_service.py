from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app import db
from app.config import get_provider_credentials

logger = logging.getLogger(__name__)

# Public endpoints that answer without a user token
PROVIDER_PING_URLS = {
    "hubspot": "https://api.hubapi.com/oauth/v1/authorize",
    "shopify": "https://www.shopify.com/admin/oauth/authorize",
    "salesforce": "https://login.salesforce.com/services/oauth2/authorize",
}


class ConnectionTestResult:
    """Result of a connection test."""

    def __init__(self, service: str, success: bool, response_time: float, error: Optional[str] = None):
        self.service = service
        self.success = success
        self.response_time = response_time
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "success": self.success,
            "response_time": round(self.response_time, 3),
            "error": self.error,
        }


class ConnectionService:
    """Reachability checks for the database, Supabase and provider APIs."""

    def __init__(self, session: AsyncSession, client: httpx.AsyncClient):
        self.session = session
        self.client = client

    async def test_database_connection(self) -> ConnectionTestResult:
        start_time = time.time()
        try:
            await self.session.execute(text("SELECT 1"))
            return ConnectionTestResult("Database", True, time.time() - start_time)
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            return ConnectionTestResult("Database", False, time.time() - start_time, str(e))

    async def test_supabase_connection(self) -> ConnectionTestResult:
        start_time = time.time()
        if db.SUPABASE is None:
            return ConnectionTestResult(
                "Supabase", False, 0.0, "Supabase URL or service role key not configured"
            )
        try:
            response = await self.client.get(f"{db.SUPABASE_URL.rstrip('/')}/auth/v1/health",
                                             headers={"apikey": db.SUPABASE_SERVICE_ROLE_KEY})
            response.raise_for_status()
            return ConnectionTestResult("Supabase", True, time.time() - start_time)
        except httpx.HTTPError as e:
            logger.error(f"Supabase connection check failed: {e}")
            return ConnectionTestResult("Supabase", False, time.time() - start_time, str(e))

    async def test_provider_connection(self, provider: str) -> ConnectionTestResult:
        """A provider passes when its OAuth host answers and credentials are set.

        Any HTTP status counts as reachable: the authorize pages redirect or
        reject anonymous requests.
        """
        service = provider.capitalize()
        if provider == "hubspot":
            service = "HubSpot"
        start_time = time.time()

        if not get_provider_credentials(provider).configured:
            return ConnectionTestResult(service, False, 0.0, f"{service} OAuth credentials not configured")
        try:
            await self.client.get(PROVIDER_PING_URLS[provider])
            return ConnectionTestResult(service, True, time.time() - start_time)
        except httpx.TransportError as e:
            logger.error(f"{service} connection check failed: {e}")
            return ConnectionTestResult(service, False, time.time() - start_time, str(e) or e.__class__.__name__)

    async def test_all_connections(self) -> List[ConnectionTestResult]:
        """Run every check; external ones concurrently."""
        results = [await self.test_database_connection()]
        results.extend(await asyncio.gather(
            self.test_supabase_connection(),
            *(self.test_provider_connection(p) for p in PROVIDER_PING_URLS),
        ))
        return results

    def get_connection_summary(self, results: List[ConnectionTestResult]) -> Dict[str, Any]:
        """Get a summary of all connection test results."""
        total_tests = len(results)
        successful_tests = sum(1 for r in results if r.success)
        failed_tests = total_tests - successful_tests

        avg_response_time = sum(r.response_time for r in results) / total_tests if total_tests > 0 else 0

        return {
            "total_tests": total_tests,
            "successful_tests": successful_tests,
            "failed_tests": failed_tests,
            "success_rate": round(successful_tests / total_tests * 100, 2) if total_tests > 0 else 0,
            "average_response_time": round(avg_response_time, 3),
            "results": [r.to_dict() for r in results],
        }
