from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.http_client import get_http_client
from app.services.connection_service import ConnectionService
from app.services.providers.registry import normalize_provider

router = APIRouter(prefix="/health", tags=["health"])


def create_connection_service(
    session: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> ConnectionService:
    return ConnectionService(session, client)


@router.get("")
@router.get("/")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "message": "Service is running"}


@router.get("/connections")
async def test_connections(
    connection_service: ConnectionService = Depends(create_connection_service),
):
    """Test the database, Supabase and every provider API."""
    results = await connection_service.test_all_connections()
    summary = connection_service.get_connection_summary(results)
    return JSONResponse(
        content=summary,
        status_code=200 if summary["success_rate"] == 100 else 503,
    )


@router.get("/connections/{provider}")
async def test_provider_connection(
    provider: str,
    connection_service: ConnectionService = Depends(create_connection_service),
):
    """Test one provider's OAuth host."""
    result = await connection_service.test_provider_connection(normalize_provider(provider))
    return JSONResponse(
        content=result.to_dict(),
        status_code=200 if result.success else 503,
    )
