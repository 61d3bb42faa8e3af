"""
Accounts: sign-in, profile, preferences and data-protection requests.

A local user row is created the first time a verified identity signs in,
together with its encryption salt. Deleting an account removes the user
row (and by cascade every conversation, message, goal, check-in, pattern
and consent) in one transaction that also writes the ``account_deleted``
security log entry.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select

from amparo.core.database import Database
from amparo.lib.encryption import generate_salt
from amparo.lib.exceptions import DatabaseError, OwnershipError, ValidationError
from amparo.lib.security import hash_uid
from amparo.models import Conversation, Goal, Message, ProgressCheckin, SecurityLog, User, UserConsent
from amparo.models.base import utcnow
from amparo.models.user import THEMES
from amparo.services.cache_service import CacheService, profile_key
from amparo.services.identity import IdentityVerifier, Principal, VerifiedIdentity

logger = logging.getLogger(__name__)

EXPORT_NOTE = "Mensagens estão criptografadas e requerem sua chave para exportação completa"


def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "external_uid": user.external_uid,
        "email": user.email,
        "display_name": user.display_name,
        "risk_level": user.risk_level,
        "theme_preference": user.theme_preference,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "last_login": user.last_login.isoformat() if user.last_login else None,
    }


class AccountService:
    def __init__(
        self,
        db: Database,
        verifier: IdentityVerifier,
        cache: CacheService | None = None,
    ) -> None:
        self._db = db
        self._verifier = verifier
        self._cache = cache

    # =========================================================================
    # Sign-in
    # =========================================================================

    async def authenticate(self, token: str) -> Principal:
        """
        Verify an identity token and resolve it to a local user.

        Raises:
            AuthError: If the token is rejected.
        """
        identity = await self._verifier.verify(token)
        user = await self.register_or_login(identity)
        return Principal(user_id=user.id, external_uid=user.external_uid, email=identity.email)

    async def register_or_login(self, identity: VerifiedIdentity) -> User:
        """Create the user (with a fresh salt) on first sign-in, otherwise stamp ``last_login``."""
        async with self._db.transaction() as session:
            user = await session.scalar(select(User).where(User.external_uid == identity.uid))
            if user is not None:
                user.last_login = utcnow()
                if identity.email and not user.email:
                    user.email = identity.email
                return user

        try:
            async with self._db.transaction() as session:
                user = User(
                    external_uid=identity.uid,
                    email=identity.email,
                    encryption_salt=generate_salt(),
                    last_login=utcnow(),
                )
                session.add(user)
        except DatabaseError:
            # Lost a race with a concurrent first sign-in; the other row wins
            async with self._db.session() as session:
                user = await session.scalar(select(User).where(User.external_uid == identity.uid))
            if user is None:
                raise
            return user

        logger.info("user_registered", extra={"user": hash_uid(user.id)})
        return user

    # =========================================================================
    # Profile
    # =========================================================================

    async def profile(self, user_id: str) -> dict[str, Any]:
        if self._cache is not None:
            cached = await self._cache.get(profile_key(user_id))
            if isinstance(cached, dict):
                return cached

        async with self._db.session() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise OwnershipError("user not found")

        data = user_to_dict(user)
        if self._cache is not None:
            await self._cache.set(profile_key(user_id), data)
        return data

    async def update_theme(self, user_id: str, theme: Any) -> str:
        if theme not in THEMES:
            raise ValidationError("theme must be one of: light, dark, system")
        async with self._db.transaction() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise OwnershipError("user not found")
            user.theme_preference = theme
        if self._cache is not None:
            await self._cache.delete(profile_key(user_id))
        return theme

    # =========================================================================
    # Data protection
    # =========================================================================

    async def delete_account(self, principal: Principal, ip_address: str | None = None) -> None:
        """
        Permanently delete the user and everything they own.

        The identity provider account is removed inside the transaction, so a
        provider failure rolls the local deletion back.
        """
        async with self._db.transaction() as session:
            user = await session.get(User, principal.user_id)
            if user is None:
                raise OwnershipError("user not found")
            session.add(
                SecurityLog(user_id=user.id, event_type="account_deleted", ip_address=ip_address)
            )
            await session.delete(user)
            await session.flush()
            await self._verifier.delete_user(principal.external_uid)

        if self._cache is not None:
            await self._cache.invalidate_user(principal.user_id)
        logger.info("account_deleted", extra={"user": hash_uid(principal.user_id)})

    async def export_data(self, user_id: str) -> dict[str, Any]:
        """Everything stored about the user. Encrypted fields are exported as metadata only."""
        async with self._db.session() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise OwnershipError("user not found")
            conversations = list(
                await session.scalars(
                    select(Conversation)
                    .where(Conversation.user_id == user_id)
                    .order_by(Conversation.created_at.desc())
                )
            )
            goals = list(
                await session.scalars(
                    select(Goal).where(Goal.user_id == user_id).order_by(Goal.created_at.desc())
                )
            )
            checkins = list(
                await session.scalars(
                    select(ProgressCheckin)
                    .where(ProgressCheckin.user_id == user_id)
                    .order_by(ProgressCheckin.created_at.desc())
                )
            )
            message_count = await session.scalar(
                select(func.count(Message.id))
                .join(Conversation, Message.conversation_id == Conversation.id)
                .where(Conversation.user_id == user_id)
            )

        return {
            "exportDate": utcnow().isoformat(),
            "user": user_to_dict(user),
            "conversations": [
                {
                    "id": c.id,
                    "title": c.title,
                    "created_at": c.created_at.isoformat(),
                    "updated_at": c.updated_at.isoformat(),
                }
                for c in conversations
            ],
            "goals": [
                {
                    "id": g.id,
                    "status": g.status,
                    "progress": g.progress,
                    "target_date": g.target_date.isoformat() if g.target_date else None,
                    "created_at": g.created_at.isoformat(),
                    "completed_at": g.completed_at.isoformat() if g.completed_at else None,
                }
                for g in goals
            ],
            "checkins": [
                {
                    "id": c.id,
                    "goal_id": c.goal_id,
                    "mood_score": c.mood_score,
                    "created_at": c.created_at.isoformat(),
                }
                for c in checkins
            ],
            "messageCount": int(message_count or 0),
            "note": EXPORT_NOTE,
        }

    async def record_consent(
        self,
        user_id: str,
        consent_type: Any,
        accepted: Any,
        ip_address: str | None = None,
    ) -> None:
        if not isinstance(consent_type, str) or not consent_type or not isinstance(accepted, bool):
            raise ValidationError("consentType and accepted are required")
        async with self._db.transaction() as session:
            session.add(
                UserConsent(
                    user_id=user_id,
                    consent_type=consent_type,
                    accepted=accepted,
                    ip_address=ip_address,
                )
            )
