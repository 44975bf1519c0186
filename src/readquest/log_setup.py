"""Structured logging for the progression engine and its worker."""

import logging

import structlog

from readquest.config import Settings

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "arq.worker", "asyncio")


def _add_environment(settings: Settings) -> structlog.types.Processor:
    def processor(_logger: object, _method: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", "readquest")
        event_dict.setdefault("environment", settings.environment)
        event_dict.setdefault("version", settings.app_version)
        return event_dict

    return processor


def setup_logging(settings: Settings) -> None:
    """Configure structlog on top of stdlib logging.

    ``log_format`` selects JSON lines (default) or the colored dev console.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _add_environment(settings),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
