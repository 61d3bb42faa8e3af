"""
Conversation and Message models for Amparo.

Conversation titles are stored in plaintext; message bodies are stored only
as an encrypted payload (ciphertext, iv, auth tag). Messages are immutable
once written and are ordered by (timestamp, id).
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from amparo.models.base import Base, new_id, utcnow

DEFAULT_TITLE = "Nova conversa"
DEFAULT_TITLES = frozenset({"Nova conversa", "Nova Conversa"})

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class Conversation(Base):
    __tablename__ = "conversations"

    user = relationship("User", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by=lambda: [Message.timestamp, Message.id],
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), default=DEFAULT_TITLE, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_conversation_user_updated", "user_id", "updated_at"),
    )

    @property
    def has_default_title(self) -> bool:
        return self.title in DEFAULT_TITLES


class Message(Base):
    """
    A single chat turn. ``content_*`` columns hold the encrypted body.

    Attributes:
        role: user | assistant
        timestamp: Write time, the primary ordering key
    """

    __tablename__ = "messages"

    conversation = relationship("Conversation", back_populates="messages")

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(String(10), nullable=False)
    content_encrypted = Column(Text, nullable=False)
    content_iv = Column(String(64), nullable=False)
    content_auth_tag = Column(String(64), nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_message_conversation_ts", "conversation_id", "timestamp"),
    )
