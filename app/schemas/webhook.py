from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class WebhookRegistrationRequest(BaseModel):
    # provider and events are validated by the registry so that a missing
    # field yields the registry's own error message
    provider: Optional[str] = None
    events: Optional[List[str]] = None
    webhook_url: Optional[str] = None
    secret: Optional[str] = None
    rate_limit: int = 100
    timeout_ms: int = 30000
    retry_attempts: int = 3
    ip_whitelist: List[str] = []
