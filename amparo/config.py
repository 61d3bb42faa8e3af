"""
Runtime configuration for Amparo.

All settings come from environment variables and are read once at startup
into a frozen Settings object, which is then passed explicitly to the
services that need it.

Environment:
    AMPARO_ENVIRONMENT            development | production (default: development)
    AMPARO_DEV_MODE               "1" enables console logs and the dev master secret
    AMPARO_ENCRYPTION_MASTER_KEY  server-side secret mixed into every user key
    AMPARO_DATABASE_URL           SQLAlchemy URL (postgres:// and sqlite:// are normalized)
    REDIS_URL                     optional cache
    ANTHROPIC_API_KEY             language model provider key
    AMPARO_FAST_MODEL / AMPARO_DEEP_MODEL
    AMPARO_COMPLETION_TIMEOUT     seconds (default: 60)
    AMPARO_IDENTITY_SECRET / _ALGORITHM / _ISSUER / _AUDIENCE
    AMPARO_CORS_ORIGINS           comma-separated origins
    AMPARO_MAX_MESSAGE_LENGTH     characters (default: 4000)
    AMPARO_ANALYTICS_SALT         salt for pseudonymous user ids in analytics events
    RATE_LIMIT_WINDOW_MS          per-IP window on /api (default: 900000)
    RATE_LIMIT_MAX_REQUESTS       per-IP requests per window (default: 100)
    AMPARO_CHAT_MESSAGES_PER_MINUTE  per-user chat messages (default: 30)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from amparo.lib.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Deterministic secret for local development only
_DEV_MASTER_SECRET = "amparo-dev-master-secret-DO-NOT-USE-IN-PRODUCTION"

DEFAULT_FAST_MODEL = "claude-3-5-haiku-latest"
DEFAULT_DEEP_MODEL = "claude-sonnet-4-5"


def normalize_database_url(url: str) -> str:
    """Rewrite sync driver URLs to their async equivalents."""
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    return url


@dataclass(frozen=True)
class Settings:
    """Application settings. Build with ``Settings.from_env()`` in production code."""

    master_secret: str
    environment: str = "development"
    dev_mode: bool = False
    database_url: str = "sqlite+aiosqlite:///./amparo.db"
    redis_url: str | None = None
    anthropic_api_key: str | None = None
    fast_model: str = DEFAULT_FAST_MODEL
    deep_model: str = DEFAULT_DEEP_MODEL
    fast_max_tokens: int = 1024
    deep_max_tokens: int = 2048
    completion_timeout: float = 60.0
    complexity_threshold: int = 7
    history_window: int = 20
    ai_history_turns: int = 10
    classifier_history_turns: int = 5
    max_message_length: int = 4000
    identity_secret: str | None = None
    identity_algorithm: str = "HS256"
    identity_issuer: str | None = None
    identity_audience: str | None = None
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    analytics_salt: str = ""
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: float = 900.0
    chat_messages_per_minute: int = 30

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """
        Read settings from the environment.

        Raises:
            ConfigurationError: If the master secret is missing outside dev
                mode, or dev mode is enabled in production.
        """
        env = os.environ if environ is None else environ
        environment = env.get("AMPARO_ENVIRONMENT", "development")
        dev_mode = env.get("AMPARO_DEV_MODE") == "1"

        if dev_mode and environment == "production":
            raise ConfigurationError(
                "AMPARO_DEV_MODE=1 is set but AMPARO_ENVIRONMENT=production. "
                "Refusing to start with development settings in production."
            )

        master_secret = env.get("AMPARO_ENCRYPTION_MASTER_KEY", "")
        if not master_secret:
            if not dev_mode:
                raise ConfigurationError(
                    "AMPARO_ENCRYPTION_MASTER_KEY is not set. "
                    "Generate one with: openssl rand -hex 32"
                )
            logger.warning(
                "Using deterministic dev master secret. Data is NOT securely encrypted."
            )
            master_secret = _DEV_MASTER_SECRET

        try:
            timeout = float(env.get("AMPARO_COMPLETION_TIMEOUT", "60"))
            max_length = int(env.get("AMPARO_MAX_MESSAGE_LENGTH", "4000"))
            rate_window = int(env.get("RATE_LIMIT_WINDOW_MS", "900000")) / 1000
            rate_max = int(env.get("RATE_LIMIT_MAX_REQUESTS", "100"))
            chat_per_minute = int(env.get("AMPARO_CHAT_MESSAGES_PER_MINUTE", "30"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        origins = env.get("AMPARO_CORS_ORIGINS", "http://localhost:5173")

        return cls(
            master_secret=master_secret,
            environment=environment,
            dev_mode=dev_mode,
            database_url=normalize_database_url(
                env.get("AMPARO_DATABASE_URL", "sqlite+aiosqlite:///./amparo.db")
            ),
            redis_url=env.get("REDIS_URL") or None,
            anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
            fast_model=env.get("AMPARO_FAST_MODEL", DEFAULT_FAST_MODEL),
            deep_model=env.get("AMPARO_DEEP_MODEL", DEFAULT_DEEP_MODEL),
            completion_timeout=timeout,
            max_message_length=max_length,
            identity_secret=env.get("AMPARO_IDENTITY_SECRET") or None,
            identity_algorithm=env.get("AMPARO_IDENTITY_ALGORITHM", "HS256"),
            identity_issuer=env.get("AMPARO_IDENTITY_ISSUER") or None,
            identity_audience=env.get("AMPARO_IDENTITY_AUDIENCE") or None,
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            analytics_salt=env.get("AMPARO_ANALYTICS_SALT", ""),
            rate_limit_max_requests=rate_max,
            rate_limit_window_seconds=rate_window,
            chat_messages_per_minute=chat_per_minute,
        )
