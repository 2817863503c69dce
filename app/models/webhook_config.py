from __future__ import annotations

import uuid

from sqlalchemy import (JSON, Boolean, Column, DateTime, Integer, String, Text,
                        UniqueConstraint, Uuid)

from app.db import Base, utcnow


class WebhookConfig(Base):
    __tablename__ = "webhook_configs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)

    events = Column(JSON, nullable=False, default=list)
    webhook_url = Column(Text, nullable=False)
    secret = Column(String, nullable=False)

    # Delivery settings
    rate_limit = Column(Integer, nullable=False, default=100)
    timeout_ms = Column(Integer, nullable=False, default=30000)
    retry_attempts = Column(Integer, nullable=False, default=3)
    ip_whitelist = Column(JSON, nullable=False, default=list)
    active = Column(Boolean, nullable=False, default=True)

    # Provider side registration
    external_webhook_id = Column(String, nullable=True)
    registration_status = Column(String, nullable=False, default="pending")  # pending, registered, failed

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_webhook_configs_user_provider"),
    )
