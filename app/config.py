from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()

SUPPORTED_PROVIDERS = ("hubspot", "shopify", "salesforce")

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
WEBHOOK_BASE_URL = os.getenv("WEBHOOK_BASE_URL", "https://romashkaai.vercel.app")

# Tokens expiring within this window are refreshed before use
TOKEN_REFRESH_BUFFER_MINUTES = int(os.getenv("TOKEN_REFRESH_BUFFER_MINUTES", "5"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))
# 1 keeps the historical first-page-only sync
SYNC_MAX_PAGES = int(os.getenv("SYNC_MAX_PAGES", "1"))


@dataclass(frozen=True)
class ProviderCredentials:
    """OAuth application credentials for one provider."""

    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: str

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


def get_provider_credentials(provider: str) -> ProviderCredentials:
    prefix = provider.upper()
    return ProviderCredentials(
        client_id=os.getenv(f"{prefix}_CLIENT_ID"),
        client_secret=os.getenv(f"{prefix}_CLIENT_SECRET"),
        redirect_uri=os.getenv(
            f"{prefix}_REDIRECT_URI",
            f"{API_BASE_URL}/api/integrations/{provider}/callback",
        ),
    )


def configured_providers() -> Dict[str, bool]:
    """Report which providers have client credentials set."""
    return {p: get_provider_credentials(p).configured for p in SUPPORTED_PROVIDERS}
