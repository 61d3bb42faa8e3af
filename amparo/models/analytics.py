"""Pseudonymous usage events. Rows carry a salted hash of the user id, never the id itself."""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String

from amparo.models.base import Base, utcnow


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(50), nullable=False)
    user_id_hashed = Column(String(64), nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_analytics_event_type", "event_type", "created_at"),
    )
