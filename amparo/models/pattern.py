"""
Identified behavioral patterns.

Append-only tags (e.g. "controle_financeiro", "isolamento") recorded when a
risk assessment names them. A tag is stored at most once per user.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from amparo.models.base import Base, utcnow


class IdentifiedPattern(Base):
    __tablename__ = "identified_patterns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    pattern_type = Column(String(100), nullable=False)
    identified_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "pattern_type", name="uq_pattern_user_type"),
    )
