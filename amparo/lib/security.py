"""
Input and transport security helpers for Amparo.

Components:
- hash_uid: log-safe user identifiers
- MessageValidator: chat message presence and size limits
- add_security_headers: HTTP security headers for every response
- SlidingWindowRateLimiter: per-key request limits

Usage:
    from amparo.lib.security import MessageValidator, hash_uid

    text = MessageValidator.validate(payload.get("message"))
    logger.info("message_received", user=hash_uid(user_id))
"""

import hashlib
import time
from collections.abc import Callable
from typing import Any

import structlog

from amparo.lib.errors import EMPTY_MESSAGE, MESSAGE_TOO_LONG
from amparo.lib.exceptions import ValidationError

logger = structlog.get_logger()


def hash_uid(user_id: Any) -> str:
    """Return a 12-char SHA-256 prefix for log-safe user identification."""
    return hashlib.sha256(str(user_id).encode()).hexdigest()[:12]


# ============================================
# Message Validation
# ============================================

class MessageValidator:
    """Validates inbound chat messages before anything is written."""

    DEFAULT_MAX_LENGTH = 4000  # characters

    @classmethod
    def validate(cls, message: Any, max_length: int = DEFAULT_MAX_LENGTH) -> str:
        """
        Check that a chat message is usable.

        Args:
            message: Raw value taken from the client frame.
            max_length: Maximum allowed characters.

        Returns:
            The message unchanged.

        Raises:
            ValidationError: If the message is missing, blank, not a string,
                or longer than max_length.
        """
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("message is empty", code=EMPTY_MESSAGE)

        if len(message) > max_length:
            logger.warning(
                "message_size_exceeded",
                message_length=len(message),
                max_size=max_length,
            )
            raise ValidationError("message is too long", code=MESSAGE_TOO_LONG)

        return message


# ============================================
# Security Headers
# ============================================

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'",
}


def add_security_headers(app: Any) -> None:
    """Attach a middleware that sets SECURITY_HEADERS on every HTTP response."""
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.requests import Request

    class SecurityHeadersMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next: Any) -> Any:
            response = await call_next(request)
            for header, value in SECURITY_HEADERS.items():
                response.headers.setdefault(header, value)
            return response

    app.add_middleware(SecurityHeadersMiddleware)


# ============================================
# Rate Limiting
# ============================================

class SlidingWindowRateLimiter:
    """
    In-process sliding window limiter keyed by an arbitrary string
    (client IP for the REST API, user id for chat messages).

    When more than ``max_keys`` keys are tracked, the least recently seen
    20% are evicted.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        max_keys: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._requests: dict[str, list[float]] = {}
        self._last_seen: dict[str, float] = {}

    def check(self, key: str) -> tuple[bool, int]:
        """
        Record one request for ``key`` if it fits in the window.

        Returns:
            (allowed, retry_after_seconds)
        """
        now = self._clock()
        if key not in self._requests:
            self._evict_stale()

        cutoff = now - self.window_seconds
        recent = [ts for ts in self._requests.get(key, []) if ts > cutoff]
        self._requests[key] = recent
        self._last_seen[key] = now

        if len(recent) >= self.max_requests:
            retry_after = int(recent[0] + self.window_seconds - now) + 1
            logger.warning("rate_limit_exceeded", key=hash_uid(key), limit=self.max_requests)
            return False, max(retry_after, 1)

        recent.append(now)
        return True, 0

    def __len__(self) -> int:
        return len(self._requests)

    def _evict_stale(self) -> None:
        if len(self._requests) < self.max_keys:
            return
        oldest = sorted(self._last_seen, key=self._last_seen.__getitem__)
        evict_count = max(len(oldest) // 5, 1)
        for key in oldest[:evict_count]:
            del self._requests[key]
            del self._last_seen[key]
        logger.info("rate_limit_eviction", evicted=evict_count, remaining=len(self._requests))
