from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, String, Text, UniqueConstraint, Uuid

from app.db import Base, utcnow


class OAuthToken(Base):
    """OAuth credentials for one connected provider account of a user."""

    __tablename__ = "oauth_tokens"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)  # 'hubspot', 'shopify', 'salesforce'

    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_type = Column(String, nullable=True)
    scope = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Shop domain, hub id or instance URL depending on provider
    store_identifier = Column(String, nullable=True)
    account_details = Column(JSON, nullable=False, default=dict)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_oauth_tokens_user_provider"),
    )
