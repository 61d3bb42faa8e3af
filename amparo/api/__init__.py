"""
HTTP and WebSocket layer for Amparo.

Provides:
- FastAPI application factory with CORS and security headers
- REST endpoints under /api (auth, conversations, goals, user, resources)
- Realtime chat WebSocket at /ws
- Health check at /health

Collaborators (database, cache, identity verifier, completion client) are
built here once and stored on ``app.state``; tests pass their own.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from amparo.api.routes import router
from amparo.api.schemas import error_response, success_response
from amparo.api.websocket import ws_router
from amparo.config import Settings
from amparo.core.database import Database
from amparo.lib.errors import INTERNAL_ERROR, VALIDATION_ERROR
from amparo.lib.exceptions import (
    AmparoException,
    AuthError,
    ConfigurationError,
    OwnershipError,
    RateLimitError,
    ValidationError,
)
from amparo.lib.security import SlidingWindowRateLimiter, add_security_headers
from amparo.services.account_service import AccountService
from amparo.services.assistant_service import AssistantService
from amparo.services.cache_service import CacheService
from amparo.services.chat_repository import ChatRepository
from amparo.services.completion import AnthropicCompletionClient, CompletionClient
from amparo.services.context_service import ContextAssembler
from amparo.services.conversation_service import ConversationService
from amparo.services.goal_service import GoalService
from amparo.services.identity import IdentityVerifier, JWTIdentityVerifier
from amparo.services.message_pipeline import MessagePipeline
from amparo.services.resource_service import ResourceService
from amparo.services.risk_service import RiskClassifier

logger = logging.getLogger(__name__)

_ALLOWED_HEADERS: list[str] = [
    "Authorization",
    "Content-Type",
    "Accept",
    "Accept-Language",
]


def _status_for(exc: AmparoException) -> int:
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, OwnershipError):
        return 404
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, RateLimitError):
        return 429
    return 500


def create_app(
    settings: Settings | None = None,
    db: Database | None = None,
    cache: CacheService | None = None,
    verifier: IdentityVerifier | None = None,
    completion: CompletionClient | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Raises:
        ConfigurationError: If required settings are missing, or CORS allows
            every origin in production.
    """
    settings = settings or Settings.from_env()
    if settings.is_production and "*" in settings.cors_origins:
        raise ConfigurationError("AMPARO_CORS_ORIGINS must not contain '*' in production")

    db = db or Database(settings.database_url)
    cache = cache or CacheService(settings.redis_url)
    verifier = verifier or JWTIdentityVerifier.from_settings(settings)
    completion = completion or AnthropicCompletionClient(settings)

    repository = ChatRepository(db)
    assistant = AssistantService(
        completion,
        complexity_threshold=settings.complexity_threshold,
        history_turns=settings.ai_history_turns,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await db.create_all()
        logger.info("Amparo started (environment=%s)", settings.environment)
        yield
        await cache.close()
        await db.dispose()

    app = FastAPI(
        title="Amparo",
        description="Encrypted journaling chat with a supportive assistant",
        version="0.1.0",
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.db = db
    app.state.cache = cache
    app.state.accounts = AccountService(db, verifier, cache)
    app.state.conversations = ConversationService(db, repository, settings, assistant)
    app.state.goals = GoalService(db, repository, settings)
    app.state.resources = ResourceService(db, settings.analytics_salt)
    app.state.api_rate_limiter = SlidingWindowRateLimiter(
        settings.rate_limit_max_requests, settings.rate_limit_window_seconds
    )
    app.state.chat_rate_limiter = SlidingWindowRateLimiter(settings.chat_messages_per_minute, 60)
    app.state.pipeline = MessagePipeline(
        settings,
        repository,
        ContextAssembler(repository, cache),
        RiskClassifier(completion, history_turns=settings.classifier_history_turns),
        assistant,
    )

    # -------------------------------------------------------------------------
    # Exception handlers
    # -------------------------------------------------------------------------
    @app.exception_handler(AmparoException)
    async def amparo_exception_handler(request: Request, exc: AmparoException) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code == 500:
            logger.error("Request failed on %s %s: %s", request.method, request.url.path, type(exc).__name__)
        headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimitError) else None
        return JSONResponse(status_code=status_code, content=error_response(exc.code), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Request validation failed on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=400, content=error_response(VALIDATION_ERROR))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_response(INTERNAL_ERROR))

    # -------------------------------------------------------------------------
    # Middleware
    # -------------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=_ALLOWED_HEADERS,
    )
    add_security_headers(app)

    app.include_router(router)
    app.include_router(ws_router)

    @app.get("/health")
    async def health_check() -> dict[str, object]:
        """Liveness plus database reachability, for load balancers and uptime checks."""
        database_ok = await db.ping()
        return success_response({"status": "ok" if database_ok else "degraded", "database": database_ok})

    return app


__all__ = ["create_app"]
