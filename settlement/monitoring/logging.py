"""
Structured logging configuration.

Every settlement log line is a JSON object carrying the deployment context
(app, environment, database dialect, correlation prefix) plus whatever the
coordinator bound for the attempt in progress (``settlement_id``,
``order_id``).
"""
import logging
import sys
from typing import Any, Callable, Dict, Optional

import structlog
from pythonjsonlogger import jsonlogger

from settlement.config import Settings, get_settings

EventDict = Dict[str, Any]

# Loggers that are chatty at INFO and carry no settlement context
QUIET_LOGGERS = ("aiosqlite", "asyncio")


def database_dialect(database_url: str) -> str:
    """Dialect name of a SQLAlchemy URL, e.g. ``sqlite`` or ``postgresql``."""
    scheme = database_url.split(":", 1)[0]
    return scheme.split("+", 1)[0] or "unknown"


def build_app_context(settings: Settings) -> EventDict:
    """Static fields added to every log event."""
    return {
        "app_name": settings.app_name,
        "app_env": settings.app_env,
        "db_dialect": database_dialect(settings.database_url),
        "correlation_prefix": settings.correlation_prefix,
    }


def add_app_context(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """
    Build a processor that stamps the deployment context onto events.

    Fields already present on the event win, so a log call can override them.
    """
    context = build_app_context(settings)

    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the root logger for JSON output on stdout.

    Safe to call more than once; existing root handlers are replaced.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context(settings),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger.addHandler(json_handler)

    # SQL echo is opt-in
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        **build_app_context(settings),
    )
