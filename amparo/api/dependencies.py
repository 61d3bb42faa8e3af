"""
FastAPI dependencies: service lookup and bearer authentication.

Services are built once in ``create_app`` and stored on ``app.state``;
routes reach them through the small getters below so tests can swap any
of them before the first request.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from amparo.lib.exceptions import AuthError, RateLimitError
from amparo.lib.security import SlidingWindowRateLimiter
from amparo.services.account_service import AccountService
from amparo.services.conversation_service import ConversationService
from amparo.services.goal_service import GoalService
from amparo.services.identity import Principal
from amparo.services.resource_service import ResourceService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_account_service(request: Request) -> AccountService:
    return request.app.state.accounts


def get_conversation_service(request: Request) -> ConversationService:
    return request.app.state.conversations


def get_goal_service(request: Request) -> GoalService:
    return request.app.state.goals


def get_resource_service(request: Request) -> ResourceService:
    return request.app.state.resources


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    accounts: AccountService = Depends(get_account_service),
) -> Principal:
    """
    Resolve the bearer token to a local user, creating the user on first sight.

    Raises:
        AuthError: If the header is missing or the token is rejected.
    """
    if credentials is None or not credentials.credentials:
        raise AuthError("authentication token not provided")
    return await accounts.authenticate(credentials.credentials)


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def enforce_rate_limit(request: Request) -> None:
    """
    Per-IP request limit for every /api route.

    Raises:
        RateLimitError: If the client used up its window.
    """
    limiter: SlidingWindowRateLimiter = request.app.state.api_rate_limiter
    allowed, retry_after = limiter.check(client_ip(request) or "unknown")
    if not allowed:
        raise RateLimitError("api rate limit exceeded", retry_after=retry_after)
