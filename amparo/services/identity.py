"""
Identity provider integration.

Amparo does not issue credentials. Clients sign in with an external
identity provider and send its ID token; the server verifies the token and
maps the provider subject (``uid``) to a local user row.

JWTIdentityVerifier verifies provider tokens with PyJWT, either with a
shared HS256 secret or an RS256 public key, checking issuer and audience
when configured.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import jwt as pyjwt

from amparo.config import Settings
from amparo.lib.exceptions import AuthError, ConfigurationError
from amparo.lib.security import hash_uid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedIdentity:
    """Claims taken from a verified identity token."""

    uid: str
    email: str | None = None
    email_verified: bool = False


@dataclass(frozen=True)
class Principal:
    """An authenticated local user, as seen by services."""

    user_id: str
    external_uid: str
    email: str | None = None


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> VerifiedIdentity:
        """
        Raises:
            AuthError: If the token is missing, malformed, expired or rejected.
        """
        ...

    async def delete_user(self, uid: str) -> None:
        """Remove the account at the identity provider."""
        ...


class JWTIdentityVerifier:
    """IdentityVerifier for providers that issue signed JWT ID tokens."""

    def __init__(
        self,
        key: str,
        algorithm: str = "HS256",
        issuer: str | None = None,
        audience: str | None = None,
    ) -> None:
        if not key:
            raise ConfigurationError("identity verification key is required")
        self._key = key
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> JWTIdentityVerifier:
        if not settings.identity_secret:
            raise ConfigurationError("AMPARO_IDENTITY_SECRET is not set")
        return cls(
            key=settings.identity_secret,
            algorithm=settings.identity_algorithm,
            issuer=settings.identity_issuer,
            audience=settings.identity_audience,
        )

    async def verify(self, token: str) -> VerifiedIdentity:
        if not token:
            raise AuthError("identity token not provided")
        try:
            claims = pyjwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={"require": ["exp", "sub"], "verify_aud": self._audience is not None},
            )
        except pyjwt.ExpiredSignatureError as e:
            raise AuthError("identity token expired") from e
        except pyjwt.InvalidTokenError as e:
            logger.info("Identity token rejected", extra={"reason": type(e).__name__})
            raise AuthError("identity token invalid") from e

        uid = claims.get("user_id") or claims["sub"]
        return VerifiedIdentity(
            uid=str(uid),
            email=claims.get("email"),
            email_verified=bool(claims.get("email_verified", False)),
        )

    async def delete_user(self, uid: str) -> None:
        # Stateless tokens: there is no provider-side account to remove.
        logger.info("Identity provider account deletion skipped", extra={"user": hash_uid(uid)})
