"""
Goal and progress check-in models for Amparo.

Goal titles, descriptions and check-in notes are encrypted with the owning
user's key. Status, progress and mood scores are plaintext so they can be
filtered and summarized without decryption.
"""

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from amparo.models.base import Base, new_id, utcnow

GOAL_STATUSES = ("active", "completed", "archived")


class Goal(Base):
    """
    Attributes:
        goal_*: Encrypted title
        description_*: Encrypted description (optional)
        status: active | completed | archived
        progress: 0-100
        completed_at: Set when status becomes completed
    """

    __tablename__ = "user_goals"

    user = relationship("User", back_populates="goals")
    checkins = relationship(
        "ProgressCheckin", back_populates="goal", cascade="all, delete-orphan"
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    goal_encrypted = Column(Text, nullable=False)
    goal_iv = Column(String(64), nullable=False)
    goal_auth_tag = Column(String(64), nullable=False)
    description_encrypted = Column(Text, nullable=True)
    description_iv = Column(String(64), nullable=True)
    description_auth_tag = Column(String(64), nullable=True)

    target_date = Column(Date, nullable=True)
    status = Column(String(20), default="active", nullable=False)
    progress = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_goal_progress_range"),
        Index("idx_goal_user_status", "user_id", "status"),
    )

    @property
    def has_description(self) -> bool:
        return bool(self.description_encrypted)


class ProgressCheckin(Base):
    __tablename__ = "progress_checkins"

    goal = relationship("Goal", back_populates="checkins")

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    goal_id = Column(String(36), ForeignKey("user_goals.id", ondelete="CASCADE"), nullable=True)

    notes_encrypted = Column(Text, nullable=True)
    notes_iv = Column(String(64), nullable=True)
    notes_auth_tag = Column(String(64), nullable=True)
    mood_score = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("mood_score IS NULL OR (mood_score >= 1 AND mood_score <= 10)", name="ck_checkin_mood"),
        Index("idx_checkin_user_created", "user_id", "created_at"),
    )

    @property
    def has_notes(self) -> bool:
        return bool(self.notes_encrypted)
