"""
User model for Amparo.

A user row carries the crypto identity: the stable ``external_uid`` issued
by the identity provider and a random per-user ``encryption_salt``. The salt
is written once and never regenerated; losing or changing it makes every
stored payload of that user undecryptable.

``risk_level`` is only ever raised by an emergency assessment. Nothing in the
application lowers it automatically.
"""

from sqlalchemy import Column, DateTime, Index, String
from sqlalchemy.orm import relationship

from amparo.models.base import Base, new_id, utcnow

RISK_LEVELS = ("low", "medium", "high")
THEMES = ("light", "dark", "system")


class User(Base):
    """
    Attributes:
        id: Primary key (UUID string)
        external_uid: Identity provider subject. Never rotates.
        email: Contact email reported by the identity provider
        display_name: Optional display name
        encryption_salt: 16 random bytes, hex-encoded
        risk_level: low | medium | high
        theme_preference: light | dark | system
        created_at / last_login: Timestamps
    """

    __tablename__ = "users"

    conversations = relationship(
        "Conversation", back_populates="user", cascade="all, delete-orphan"
    )
    goals = relationship("Goal", back_populates="user", cascade="all, delete-orphan")

    id = Column(String(36), primary_key=True, default=new_id)
    external_uid = Column(String(128), nullable=False, unique=True)
    email = Column(String(320), nullable=True)
    display_name = Column(String(255), nullable=True)
    encryption_salt = Column(String(64), nullable=True)
    risk_level = Column(String(10), default="low", nullable=False)
    theme_preference = Column(String(10), default="system", nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_login = Column(DateTime(timezone=True), default=utcnow, nullable=True)

    __table_args__ = (
        Index("idx_user_external_uid", "external_uid"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, risk_level={self.risk_level})>"
