"""
SQLAlchemy ORM models for persistence.
"""
from sqlalchemy import Column, DateTime, JSON, String, UniqueConstraint

from db import Base
from domain.models import utcnow


class DiscoveryORM(Base):
    __tablename__ = "discoveries"
    __table_args__ = (
        UniqueConstraint("user_id", "route_id", "place_id", name="uq_discovery_user_route_place"),
    )

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    route_id = Column(String, nullable=False, index=True)
    place_id = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    place_data = Column(JSON, nullable=False)
    discovered_at = Column(DateTime, default=utcnow, nullable=False)
    decided_at = Column(DateTime, nullable=True)
    dismiss_expires_at = Column(DateTime, nullable=True)
    summary_requested_at = Column(DateTime, nullable=True)
    summary = Column(JSON, nullable=True)
    origin = Column(String, nullable=False, default="route")
