"""Tests for ResourceService (amparo/services/resource_service.py)."""

from __future__ import annotations

import logging

import pytest
from conftest import MEMORY_URL
from sqlalchemy import select

from amparo.core.database import Database
from amparo.lib.encryption import hash_data
from amparo.lib.exceptions import OwnershipError
from amparo.models import AnalyticsEvent, LocalResource
from amparo.services.resource_service import ResourceService


@pytest.fixture
async def resources(db) -> ResourceService:
    async with db.transaction() as session:
        session.add_all(
            [
                LocalResource(
                    id=1, name="Casa Abrigo", type="shelter", city="São Paulo", state="SP",
                    available_24_7=True, verified=True,
                ),
                LocalResource(
                    id=2, name="Apoio Jurídico", type="legal", city="São Paulo", state="SP",
                    available_24_7=False, verified=True,
                ),
                LocalResource(
                    id=3, name="Delegacia da Mulher", type="emergency", city="Recife", state="PE",
                    available_24_7=True, verified=True,
                ),
                LocalResource(
                    id=4, name="Não verificado", type="shelter", city="São Paulo", state="SP",
                    available_24_7=True, verified=False,
                ),
                LocalResource(
                    id=5, name="Abrigo Esperança", type="shelter", city="São Paulo", state="SP",
                    available_24_7=True, verified=True,
                ),
            ]
        )
    return ResourceService(db)


class TestListLocal:
    @pytest.mark.asyncio
    async def test_only_verified_ordered_by_availability_then_name(self, resources):
        names = [r["name"] for r in await resources.list_local()]
        assert names == ["Abrigo Esperança", "Casa Abrigo", "Delegacia da Mulher", "Apoio Jurídico"]

    @pytest.mark.asyncio
    async def test_filters(self, resources):
        shelters = await resources.list_local(resource_type="shelter")
        assert {r["id"] for r in shelters} == {1, 5}

        in_recife = await resources.list_local(city="recife")
        assert [r["id"] for r in in_recife] == [3]

        in_sp = await resources.list_local(state="sp", resource_type="legal")
        assert [r["id"] for r in in_sp] == [2]

    @pytest.mark.asyncio
    async def test_no_match(self, resources):
        assert await resources.list_local(city="Manaus") == []


class TestEmergency:
    @pytest.mark.asyncio
    async def test_national_and_local(self, resources):
        data = await resources.emergency()

        assert [r["phone"] for r in data["national"]] == ["190", "180", "188", "100", "192"]
        assert [r["name"] for r in data["local"]] == ["Delegacia da Mulher"]


class TestGet:
    @pytest.mark.asyncio
    async def test_get_verified(self, resources):
        assert (await resources.get(1))["name"] == "Casa Abrigo"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("resource_id", [4, 999])
    async def test_unverified_or_missing(self, resources, resource_id):
        with pytest.raises(OwnershipError):
            await resources.get(resource_id)


class TestLogAccess:
    @pytest.mark.asyncio
    async def test_stores_only_salted_hash(self, db, principal):
        service = ResourceService(db, analytics_salt="pepper")

        await service.log_access(principal.user_id, 3, "emergency")

        async with db.session() as session:
            events = list(await session.scalars(select(AnalyticsEvent)))
        assert len(events) == 1
        event = events[0]
        assert event.event_type == "resource_accessed"
        assert event.user_id_hashed == hash_data(principal.user_id, "pepper")
        assert event.user_id_hashed != hash_data(principal.user_id)
        assert principal.user_id not in event.user_id_hashed
        assert event.details == {"resourceId": 3, "resourceType": "emergency"}

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_not_raised(self, caplog):
        # No tables: the insert fails inside the transaction
        database = Database(MEMORY_URL)
        try:
            with caplog.at_level(logging.WARNING, logger="amparo.services.resource_service"):
                await ResourceService(database).log_access("user-1", 1, "shelter")
        finally:
            await database.dispose()

        assert "resource_access_log_failed" in caplog.text
