"""
Logging Configuration for the Market Data Pipeline

structlog over the standard logging module, so records from SQLAlchemy, redis
and Prefect share one renderer with the pipeline's own events.
"""

import logging
import sys
from typing import List, Optional

import structlog
from structlog.stdlib import ProcessorFormatter
from structlog.typing import Processor

from market_pipeline.config.settings import get_settings

# Libraries that log through stdlib at their own level
_LIBRARY_LOGGERS = ("redis", "asyncio", "aiosqlite")


def _shared_processors() -> List[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Route structlog and stdlib logging through one stdout handler.

    Args:
        log_level: Override for LOG_LEVEL
        log_format: Override for LOG_FORMAT ("json", anything else renders for a console)
    """
    settings = get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    log_format = log_format or settings.monitoring.log_format
    numeric_level = logging.getLevelName(level)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    shared = _shared_processors()
    structlog.configure(
        processors=shared + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processor=_renderer(log_format), foreign_pre_chain=shared))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)

    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.database.echo else logging.WARNING)

    structlog.contextvars.bind_contextvars(app=settings.app_name, environment=settings.app_env)

    structlog.get_logger(__name__).info("Logging configured", level=level, format=log_format)
