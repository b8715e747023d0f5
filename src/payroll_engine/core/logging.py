import logging
from typing import Optional

import structlog

from .config import EngineSettings, get_settings


def add_engine_fields(settings: EngineSettings):
    """Stamp every event with the engine version and environment that produced it."""

    def processor(logger, method_name, event_dict):
        event_dict.setdefault("engine_version", settings.engine_version)
        event_dict.setdefault("env", settings.env)
        return event_dict

    return processor


def configure_logging(settings: Optional[EngineSettings] = None, level: Optional[str] = None) -> None:
    settings = settings or get_settings()
    level = (level or settings.log_level).upper()
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        add_engine_fields(settings),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(level=level)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_calculation_context(**values) -> None:
    """Attach identifiers (employee, period) to every log line of the current calculation."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def clear_calculation_context() -> None:
    structlog.contextvars.clear_contextvars()
