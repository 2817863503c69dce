from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, Index, String, UniqueConstraint, Uuid

from app.db import Base, utcnow


class SyncedEntity(Base):
    """A provider record (contact or deal) mirrored locally."""

    __tablename__ = "synced_entities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)  # 'contact' or 'deal'
    external_id = Column(String, nullable=False)

    name = Column(String, nullable=True)
    data = Column(JSON, nullable=False, default=dict)

    synced_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "provider", "entity_type", "external_id",
            name="uq_synced_entities_key",
        ),
        Index("ix_synced_entities_snapshot", "user_id", "provider", "entity_type"),
    )
