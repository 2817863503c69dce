from __future__ import annotations

from typing import Any, Optional


class IntegrationError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class InvalidRequest(IntegrationError):
    status_code = 400


class Unauthorized(IntegrationError):
    status_code = 401


class NotFound(IntegrationError):
    status_code = 404


class TokenNotFound(NotFound):
    def __init__(self, user_id: str, provider: Optional[str] = None) -> None:
        target = provider or "integration"
        super().__init__(f"No {target} token found for user {user_id}")
        self.user_id = user_id
        self.provider = provider


class TokenError(IntegrationError):
    status_code = 400


class RefreshTokenMissing(TokenError):
    def __init__(self, provider: str) -> None:
        super().__init__(
            f"No refresh token stored for {provider}; reconnect the integration",
            details={"provider": provider, "reconnect": True},
        )
        self.provider = provider


class RefreshFailed(TokenError):
    def __init__(self, provider: str, status: int, body: str) -> None:
        super().__init__(
            "Token refresh failed",
            details={"provider": provider, "status": status, "body": body},
        )
        self.provider = provider
        self.status = status
        self.body = body


class ProviderUnavailable(IntegrationError):
    status_code = 502


class StorageError(IntegrationError):
    status_code = 500
