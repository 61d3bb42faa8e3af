"""
Consent and security audit records.

Security logs intentionally keep no foreign key to users: the
``account_deleted`` entry must outlive the user row it describes.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from amparo.models.base import Base, utcnow

CONSENT_TYPES = ("terms", "privacy", "data_processing", "ai_assistance")


class UserConsent(Base):
    __tablename__ = "user_consents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    consent_type = Column(String(50), nullable=False)
    accepted = Column(Boolean, nullable=False)
    accepted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    ip_address = Column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_consent_user_type", "user_id", "consent_type"),
    )


class SecurityLog(Base):
    __tablename__ = "security_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=True)
    event_type = Column(String(50), nullable=False)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
