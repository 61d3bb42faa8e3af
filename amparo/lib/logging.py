"""
Logging setup for Amparo: structlog rendering for stdlib loggers.

Application modules log through ``logging.getLogger(__name__)``; the root
handler installed here renders those records (and any structlog loggers)
as JSON lines, or as console lines when AMPARO_DEV_MODE=1.
"""

import logging
import os
import sys

import structlog

QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "sqlalchemy.engine", "websockets")


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(dev_mode: bool | None = None, log_level: str | None = None) -> None:
    """
    Install the structlog formatter on the root logger. Call once at startup.

    ``dev_mode`` and ``log_level`` default to AMPARO_DEV_MODE and LOG_LEVEL.
    Records are written to stderr.
    """
    if dev_mode is None:
        dev_mode = os.environ.get("AMPARO_DEV_MODE") == "1"
    level = logging.getLevelName((log_level or os.environ.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer() if dev_mode else structlog.processors.JSONRenderer()
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
