from __future__ import annotations

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text, Uuid

from app.db import Base, utcnow


class WebhookEvent(Base):
    """Inbound webhook delivery. Written by the receivers, read for health stats."""

    __tablename__ = "webhook_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider = Column(String, nullable=False)
    event_type = Column(String, nullable=False)

    success = Column(Boolean, nullable=False, default=False)
    processed = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_webhook_events_provider_created", "provider", "created_at"),
    )
