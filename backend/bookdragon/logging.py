"""Logging configuration using structlog.

Console output is colored key-value lines; set ``LOG_JSON=true`` for one
JSON object per line (containers, log shipping).
"""

import logging
import sys

import structlog
from structlog.typing import Processor

from bookdragon.config import settings

# Third-party loggers and the level they are capped at
QUIET_LOGGERS: dict[str, int] = {
    "asyncio": logging.INFO,
    "asyncpg": logging.WARNING,
    "alembic": logging.INFO,
    "sqlalchemy.pool": logging.WARNING,
}


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(*, level: str | None = None, json_output: bool | None = None) -> None:
    """Route structlog and stdlib loggers (SQLAlchemy, asyncpg, alembic) to stdout.

    ``level`` and ``json_output`` default to LOG_LEVEL and LOG_JSON.
    With DEBUG=true the SQL emitted by SQLAlchemy is logged too.
    """
    level_name = (level or settings.log_level).upper()
    json_output = settings.log_json if json_output is None else json_output

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso" if json_output else "%Y-%m-%d %H:%M:%S", utc=json_output),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        shared_processors.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_output),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    for name, cap in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(cap)
    # INFO on sqlalchemy.engine prints every statement
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.debug else logging.WARNING)


_configured = False


def setup_logging(*, level: str | None = None) -> None:
    """Setup logging once. Safe to call multiple times."""
    global _configured
    if not _configured:
        configure_logging(level=level)
        _configured = True
