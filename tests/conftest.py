from __future__ import annotations

import datetime as dt
import uuid
from types import SimpleNamespace
from typing import AsyncGenerator, Callable, Dict, List, Optional, Tuple, Union
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from app import db
from app.db import Base, get_db, utcnow
from app.http_client import get_http_client
from app.main import app
from app.models.integration_log import IntegrationLog, WebhookRegistrationLog  # noqa: F401
from app.models.oauth_token import OAuthToken
from app.models.synced_entity import SyncedEntity  # noqa: F401
from app.models.webhook_config import WebhookConfig  # noqa: F401
from app.models.webhook_event import WebhookEvent  # noqa: F401

VALID_BEARER = "valid-session-token"

Handler = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class ProviderAPI:
    """Routes outbound provider calls to canned responses and records them."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Handler]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, handler: Optional[Handler] = None, **response_kwargs) -> None:
        """Register a response for METHOD url (query string ignored).

        Several registrations for the same route are served in order; the last
        one keeps answering.
        """
        if handler is None:
            status = response_kwargs.pop("status_code", 200)
            handler = _response_factory(status, response_kwargs)
        self.routes.setdefault((method.upper(), url), []).append(handler)

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and _route_url(r) == url]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handlers = self.routes.get((request.method, _route_url(request)))
        if not handlers:
            return httpx.Response(404, json={"message": f"unmocked {request.method} {request.url}"})
        handler = handlers.pop(0) if len(handlers) > 1 else handlers[0]
        if isinstance(handler, httpx.Response):
            return handler
        return handler(request)


def _route_url(request: httpx.Request) -> str:
    return f"{request.url.scheme}://{request.url.host}{request.url.path}"


def _response_factory(status_code: int, kwargs: dict) -> Callable[[httpx.Request], httpx.Response]:
    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, **kwargs)
    return respond


@pytest.fixture(autouse=True)
def provider_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Every provider is configured with dummy OAuth client credentials."""
    for provider in ("HUBSPOT", "SHOPIFY", "SALESFORCE"):
        monkeypatch.setenv(f"{provider}_CLIENT_ID", f"{provider.lower()}-client-id")
        monkeypatch.setenv(f"{provider}_CLIENT_SECRET", f"{provider.lower()}-client-secret")


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """A fresh on-disk SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    TestingSessionLocal = sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def provider_api() -> ProviderAPI:
    return ProviderAPI()


@pytest_asyncio.fixture
async def http_client(provider_api: ProviderAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_api.handle)) as client:
        yield client


@pytest.fixture
def sample_user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def supabase_auth(monkeypatch: pytest.MonkeyPatch, sample_user_id: str) -> MagicMock:
    """Supabase client accepting only ``VALID_BEARER`` as the sample user."""

    def get_user(jwt: str):
        if jwt == VALID_BEARER:
            return SimpleNamespace(user=SimpleNamespace(id=sample_user_id))
        return SimpleNamespace(user=None)

    fake = MagicMock()
    fake.auth.get_user.side_effect = get_user
    monkeypatch.setattr(db, "SUPABASE", fake)
    return fake


@pytest_asyncio.fixture
async def api_client(
    db_session: AsyncSession,
    http_client: httpx.AsyncClient,
    supabase_auth: MagicMock,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Client for the FastAPI app bound to the test database and mocked providers."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
        yield http_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = override_get_http_client
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {VALID_BEARER}"}


@pytest.fixture
def make_token(db_session: AsyncSession):
    """Insert an OAuthToken row; ``expires_in`` is seconds from now."""

    async def _make_token(
        user_id: str,
        provider: str = "hubspot",
        access_token: str = "stored-access-token",
        refresh_token: Optional[str] = "stored-refresh-token",
        expires_in: Optional[int] = 3600,
        **fields,
    ) -> OAuthToken:
        expires_at = utcnow() + dt.timedelta(seconds=expires_in) if expires_in is not None else None
        token = OAuthToken(
            user_id=user_id,
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            account_details=fields.pop("account_details", {}),
            **fields,
        )
        db_session.add(token)
        await db_session.commit()
        return token

    return _make_token
