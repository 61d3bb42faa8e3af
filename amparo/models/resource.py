"""Verified local support services (shelters, legal aid, health units)."""

from sqlalchemy import Boolean, Column, Integer, String, Text

from amparo.models.base import Base


class LocalResource(Base):
    __tablename__ = "local_resources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(2), nullable=True)
    website = Column(String(500), nullable=True)
    available_24_7 = Column(Boolean, default=False, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "website": self.website,
            "available_24_7": self.available_24_7,
        }
