from __future__ import annotations

import logging

import structlog

from chorus import __version__

_CONFIGURED = False


def _add_service(_, __, event_dict: dict) -> dict:
    event_dict.setdefault("service", "chorus")
    event_dict.setdefault("version", __version__)
    return event_dict


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    global _CONFIGURED
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        _add_service,
    ]

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _CONFIGURED = True


def get_logger(name: str):
    """Loggers pick up whatever ``configure_logging`` last installed; defaults apply on first use."""
    if not _CONFIGURED:
        configure_logging()
    return structlog.get_logger(name)
