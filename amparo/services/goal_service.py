"""
Goals and progress check-ins.

Titles, descriptions and check-in notes are encrypted with the owner's key;
status, progress and mood scores stay in plaintext. Reads degrade per item:
a goal whose title cannot be decrypted is returned with a placeholder.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import select

from amparo.config import Settings
from amparo.core.database import Database
from amparo.lib.encryption import EncryptedPayload, EncryptionSession
from amparo.lib.exceptions import OwnershipError, ValidationError
from amparo.models import Goal, ProgressCheckin
from amparo.models.base import utcnow
from amparo.models.goal import GOAL_STATUSES
from amparo.services.chat_repository import ChatRepository
from amparo.services.identity import Principal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoalInput:
    """A new goal after the request body has been decoded."""

    title: str
    description: str | None = None
    target_date: date | None = None


class GoalService:
    def __init__(self, db: Database, repository: ChatRepository, settings: Settings) -> None:
        self._db = db
        self._repository = repository
        self._settings = settings

    async def _crypto(self, principal: Principal) -> EncryptionSession:
        salt = await self._repository.ensure_salt(principal.user_id)
        return await EncryptionSession(
            principal.external_uid, salt, self._settings.master_secret
        ).prepare()

    async def _owned_goal(self, session: Any, user_id: str, goal_id: str) -> Goal:
        goal = await session.scalar(select(Goal).where(Goal.id == goal_id, Goal.user_id == user_id))
        if goal is None:
            raise OwnershipError("goal not found")
        return goal

    # =========================================================================
    # Goals
    # =========================================================================

    async def create(self, principal: Principal, goal_input: GoalInput) -> dict[str, Any]:
        title = goal_input.title.strip() if goal_input.title else ""
        if not title:
            raise ValidationError("goal title is required")

        crypto = await self._crypto(principal)
        goal = Goal(
            user_id=principal.user_id,
            status="active",
            progress=0,
            target_date=goal_input.target_date,
            **crypto.encrypt_data(title).to_db_dict("goal"),
        )
        if goal_input.description:
            for column, value in crypto.encrypt_data(goal_input.description).to_db_dict("description").items():
                setattr(goal, column, value)

        async with self._db.transaction() as session:
            session.add(goal)

        logger.info("goal_created", extra={"goal_id": goal.id})
        return self._goal_dict(goal, title, goal_input.description)

    async def list(self, principal: Principal, status: str | None = None) -> list[dict[str, Any]]:
        if status is not None and status not in GOAL_STATUSES:
            raise ValidationError("invalid goal status")

        stmt = select(Goal).where(Goal.user_id == principal.user_id)
        if status is not None:
            stmt = stmt.where(Goal.status == status)
        async with self._db.session() as session:
            goals = list(await session.scalars(stmt.order_by(Goal.created_at.desc())))
        if not goals:
            return []

        crypto = await self._crypto(principal)
        return [self._decrypted_goal(crypto, goal) for goal in goals]

    async def get(self, principal: Principal, goal_id: str) -> dict[str, Any]:
        async with self._db.session() as session:
            goal = await self._owned_goal(session, principal.user_id, goal_id)

        crypto = await self._crypto(principal)
        return self._decrypted_goal(crypto, goal)

    async def update(
        self,
        user_id: str,
        goal_id: str,
        status: str | None = None,
        progress: int | None = None,
    ) -> dict[str, Any]:
        if status is None and progress is None:
            raise ValidationError("no update provided")
        if status is not None and status not in GOAL_STATUSES:
            raise ValidationError("invalid goal status")
        if progress is not None and not 0 <= progress <= 100:
            raise ValidationError("progress must be between 0 and 100")

        async with self._db.transaction() as session:
            goal = await self._owned_goal(session, user_id, goal_id)
            if status is not None:
                goal.status = status
                if status == "completed":
                    goal.completed_at = utcnow()
            if progress is not None:
                goal.progress = progress

        return {
            "id": goal.id,
            "status": goal.status,
            "progress": goal.progress,
            "completed_at": goal.completed_at.isoformat() if goal.completed_at else None,
        }

    async def delete(self, user_id: str, goal_id: str) -> None:
        async with self._db.transaction() as session:
            goal = await self._owned_goal(session, user_id, goal_id)
            await session.delete(goal)

    # =========================================================================
    # Check-ins
    # =========================================================================

    async def create_checkin(
        self,
        principal: Principal,
        goal_id: str,
        notes: str | None = None,
        mood_score: int | None = None,
    ) -> dict[str, Any]:
        if mood_score is not None and not 1 <= mood_score <= 10:
            raise ValidationError("mood score must be between 1 and 10")

        async with self._db.session() as session:
            await self._owned_goal(session, principal.user_id, goal_id)

        checkin = ProgressCheckin(user_id=principal.user_id, goal_id=goal_id, mood_score=mood_score)
        if notes:
            crypto = await self._crypto(principal)
            for column, value in crypto.encrypt_data(notes).to_db_dict("notes").items():
                setattr(checkin, column, value)

        async with self._db.transaction() as session:
            session.add(checkin)

        return {
            "id": checkin.id,
            "goal_id": goal_id,
            "mood_score": checkin.mood_score,
            "notes": notes,
            "created_at": checkin.created_at.isoformat(),
        }

    async def list_checkins(self, principal: Principal, goal_id: str) -> list[dict[str, Any]]:
        async with self._db.session() as session:
            await self._owned_goal(session, principal.user_id, goal_id)
            checkins = list(
                await session.scalars(
                    select(ProgressCheckin)
                    .where(ProgressCheckin.goal_id == goal_id)
                    .order_by(ProgressCheckin.created_at.desc())
                )
            )

        crypto = await self._crypto(principal) if any(c.has_notes for c in checkins) else None
        return [
            {
                "id": checkin.id,
                "goal_id": goal_id,
                "mood_score": checkin.mood_score,
                "notes": (
                    crypto.decrypt_or_placeholder(EncryptedPayload.from_row(checkin, "notes"))
                    if crypto is not None and checkin.has_notes
                    else None
                ),
                "created_at": checkin.created_at.isoformat(),
            }
            for checkin in checkins
        ]

    def _decrypted_goal(self, crypto: EncryptionSession, goal: Goal) -> dict[str, Any]:
        title = crypto.decrypt_or_placeholder(EncryptedPayload.from_row(goal, "goal"))
        description = (
            crypto.decrypt_or_placeholder(EncryptedPayload.from_row(goal, "description"))
            if goal.has_description
            else None
        )
        return self._goal_dict(goal, title, description)

    @staticmethod
    def _goal_dict(goal: Goal, title: str, description: str | None) -> dict[str, Any]:
        return {
            "id": goal.id,
            "title": title,
            "description": description,
            "status": goal.status,
            "progress": goal.progress,
            "target_date": goal.target_date.isoformat() if goal.target_date else None,
            "created_at": goal.created_at.isoformat() if goal.created_at else None,
            "completed_at": goal.completed_at.isoformat() if goal.completed_at else None,
        }
