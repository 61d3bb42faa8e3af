"""
Custom exception hierarchy for Amparo.

All exceptions inherit from AmparoException so callers can catch every
Amparo-specific failure at once while still handling specific types.
Each class carries a default error code from amparo.lib.errors, which the
API and realtime layers turn into a user-facing message.

Ownership failures are a separate type from authentication failures: an
unowned resource is reported to clients as "not found".
"""

from __future__ import annotations

from amparo.lib import errors


class AmparoException(Exception):
    """Base exception for all Amparo errors."""

    code: str = errors.INTERNAL_ERROR

    def __init__(self, message: str = "", code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ConfigurationError(AmparoException):
    """Missing environment variables, invalid config values, or startup failures."""


class CryptoError(AmparoException):
    """Key derivation, encryption or decryption failures (wrong key, tampered data)."""


class AuthError(AmparoException):
    """Identity token missing, expired, or rejected by the identity provider."""

    code = errors.AUTH_REQUIRED


class OwnershipError(AmparoException):
    """The resource does not exist or does not belong to the requesting user."""

    code = errors.NOT_FOUND


class ValidationError(AmparoException):
    """Input validation, parsing, or type conversion failures."""

    code = errors.VALIDATION_ERROR


class CompletionError(AmparoException):
    """The language model call failed, timed out, or returned nothing usable."""

    code = errors.AI_UNAVAILABLE


class RateLimitError(AmparoException):
    """Too many requests from one client or user within the current window."""

    code = errors.RATE_LIMITED

    def __init__(self, message: str = "", retry_after: int = 1) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class DatabaseError(AmparoException):
    """Database connection, query, or transaction failures."""


__all__ = [
    "AmparoException",
    "AuthError",
    "CompletionError",
    "ConfigurationError",
    "CryptoError",
    "DatabaseError",
    "OwnershipError",
    "RateLimitError",
    "ValidationError",
]
