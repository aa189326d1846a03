"""
Structured logging for the operator.

Every line carries the operator identity and, during a reconcile pass, the
cluster and namespace bound through structlog contextvars. Production emits
one JSON object per line for log collectors; other environments render a
colored console view.
"""
import logging
import sys
from enum import Enum
from typing import Any, Dict, Optional

import structlog
from structlog.types import EventDict, Processor

from cassandra_operator.config.settings import settings

# Client libraries log every request at INFO; the operator logs its own calls
QUIET_LOGGERS: Dict[str, int] = {
    "kubernetes_asyncio": logging.WARNING,
    "aiohttp.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def add_operator_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag events with the operator version and the namespace it watches."""
    event_dict.setdefault("operator", settings.app_name)
    event_dict.setdefault("version", settings.app_version)
    event_dict.setdefault("watch_namespace", settings.watch_namespace or "*")
    return event_dict


def render_enum_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Log enums (phases, actions, operation modes) by their value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def configure_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Level name, defaults to ``settings.log_level``
        json_logs: Force JSON output, defaults to production only
    """
    level = getattr(logging, (log_level or settings.log_level).upper())
    if json_logs is None:
        json_logs = settings.is_production

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        add_operator_context,
        render_enum_values,
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(quiet_level, level))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)
