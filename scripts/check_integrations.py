#!/usr/bin/env python3
"""
Check Connected Integrations Script

Lists stored OAuth tokens (without exposing token material), reports which
ones are inside the refresh window and optionally refreshes them.

Usage:
    python3 scripts/check_integrations.py [user_id] [--refresh]
"""

from __future__ import annotations

import asyncio
import sys
from typing import Optional

import httpx
from dotenv import load_dotenv
from sqlalchemy import select

from app.config import HTTP_TIMEOUT_SECONDS, configured_providers
from app.db import AsyncSessionLocal
from app.exceptions import IntegrationError
from app.models.oauth_token import OAuthToken
from app.services.token_service import TokenService

load_dotenv()


async def check_integrations(user_id: Optional[str] = None, refresh: bool = False) -> None:
    """Check all stored integrations and their token status."""

    print("🔍 Checking Integrations")
    print("=" * 50)

    for provider, configured in configured_providers().items():
        print(f"   {provider}: credentials {'✅' if configured else '❌ missing'}")
    print()

    async with AsyncSessionLocal() as session, httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        stmt = select(OAuthToken).order_by(OAuthToken.user_id, OAuthToken.provider)
        if user_id:
            stmt = stmt.where(OAuthToken.user_id == user_id)
        tokens = (await session.execute(stmt)).scalars().all()

        if not tokens:
            print("❌ No integrations found!")
            if user_id:
                print(f"   User ID: {user_id}")
            print("\n💡 Connect one via GET /api/integrations/{provider}/authorize?user_id=...")
            return

        print(f"✅ Found {len(tokens)} integration(s):\n")
        service = TokenService(session, client)

        for i, token in enumerate(tokens, 1):
            needs_refresh = service.needs_refresh(token)
            print(f"📋 Integration {i}:")
            print(f"   ID: {token.id}")
            print(f"   User ID: {token.user_id}")
            print(f"   Provider: {token.provider}")
            print(f"   Account: {token.store_identifier or 'Unknown'}")
            print(f"   Expires: {token.expires_at or 'Never'}")
            print(f"   Has Refresh Token: {'✅' if token.refresh_token else '❌'}")
            print(f"   Last Sync: {token.last_synced_at or 'Never'}")
            print(f"   Token Status: {'⚠️  refresh due' if needs_refresh else '✅ valid'}")

            if refresh and needs_refresh:
                try:
                    await service.ensure_valid(token.user_id, token.provider)
                    print("   Refresh: ✅ refreshed")
                except IntegrationError as e:
                    print(f"   Refresh: ❌ {e.message}")
            print()


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    asyncio.run(check_integrations(args[0] if args else None, refresh="--refresh" in sys.argv))
