from __future__ import annotations

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text, Uuid

from app.db import Base, utcnow


class IntegrationLog(Base):
    """Append-only audit trail of connect / refresh / sync actions."""

    __tablename__ = "integration_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)
    action = Column(String, nullable=False)  # 'oauth_connect', 'token_refresh', 'manual_sync'
    status = Column(String, nullable=False)  # 'success', 'error'
    message = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)


class WebhookRegistrationLog(Base):
    """Append-only audit trail of webhook registration attempts."""

    __tablename__ = "webhook_registration_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    webhook_config_id = Column(Uuid, nullable=False, index=True)
    provider = Column(String, nullable=False)
    action = Column(String, nullable=False)  # 'create' or 'update'
    success = Column(Boolean, nullable=False)
    response_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
