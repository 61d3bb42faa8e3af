"""Directory of verified support services plus the fixed national hotlines."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select

from amparo.core.database import Database
from amparo.lib.encryption import hash_data
from amparo.lib.exceptions import DatabaseError, OwnershipError
from amparo.models import AnalyticsEvent, LocalResource
from amparo.services.risk_service import get_emergency_resources

logger = logging.getLogger(__name__)

EMERGENCY_TYPE = "emergency"
RESOURCE_ACCESSED = "resource_accessed"


class ResourceService:
    def __init__(self, db: Database, analytics_salt: str = "") -> None:
        self._db = db
        self._analytics_salt = analytics_salt

    async def list_local(
        self,
        resource_type: str | None = None,
        city: str | None = None,
        state: str | None = None,
    ) -> list[dict[str, Any]]:
        """Verified resources, 24/7 services first, then by name. City and state match case-insensitively."""
        stmt = select(LocalResource).where(LocalResource.verified.is_(True))
        if resource_type:
            stmt = stmt.where(LocalResource.type == resource_type)
        if city:
            stmt = stmt.where(func.lower(LocalResource.city) == city.lower())
        if state:
            stmt = stmt.where(func.lower(LocalResource.state) == state.lower())
        stmt = stmt.order_by(LocalResource.available_24_7.desc(), LocalResource.name.asc())

        async with self._db.session() as session:
            return [resource.to_dict() for resource in await session.scalars(stmt)]

    async def emergency(self) -> dict[str, Any]:
        async with self._db.session() as session:
            local = await session.scalars(
                select(LocalResource)
                .where(LocalResource.type == EMERGENCY_TYPE, LocalResource.verified.is_(True))
                .order_by(LocalResource.name.asc())
            )
            return {
                "national": [resource.to_dict() for resource in get_emergency_resources()],
                "local": [resource.to_dict() for resource in local],
            }

    async def get(self, resource_id: int) -> dict[str, Any]:
        async with self._db.session() as session:
            resource = await session.get(LocalResource, resource_id)
        if resource is None or not resource.verified:
            raise OwnershipError("resource not found")
        return resource.to_dict()

    async def log_access(self, user_id: str, resource_id: int | None, resource_type: str | None) -> None:
        """
        Record that a user opened a resource.

        Only a salted SHA-256 of the user id is stored. A failed write is
        logged and dropped so the client never sees it.
        """
        event = AnalyticsEvent(
            event_type=RESOURCE_ACCESSED,
            user_id_hashed=hash_data(user_id, self._analytics_salt),
            details={"resourceId": resource_id, "resourceType": resource_type},
        )
        try:
            async with self._db.transaction() as session:
                session.add(event)
        except DatabaseError:
            logger.warning("resource_access_log_failed", extra={"resource_id": resource_id})
