from __future__ import annotations

from typing import AsyncIterator

import httpx

from app.config import HTTP_TIMEOUT_SECONDS


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """FastAPI dependency yielding a provider HTTP client for one request."""
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        yield client
