"""
SQLAlchemy declarative base for Amparo.

Usage:
    from amparo.models.base import Base

    class MyModel(Base):
        __tablename__ = "my_table"
        ...
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base shared by every Amparo model."""


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    """Primary keys are random UUID4 strings so they are safe to expose to clients."""
    return str(uuid.uuid4())


__all__ = ["Base", "new_id", "utcnow"]
