"""
Structured logging configuration using structlog.

JSON output in production, colored console output in development.
CPF values logged under well-known keys are masked before rendering.
"""
import logging
import sys
from typing import Any

import structlog

# Event-dict keys that carry a CPF and must never be rendered in full
_CPF_KEYS = ("cpf", "customer_cpf", "kit_cpf")

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "uvicorn.access")


def mask_cpf_processor(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor: replace CPF values with ``123.***.***-09``."""
    for key in _CPF_KEYS:
        value = event_dict.get(key)
        if value:
            digits = "".join(ch for ch in str(value) if ch.isdigit())
            event_dict[key] = f"{digits[:3]}.***.***-{digits[-2:]}" if len(digits) == 11 else "***"
    return event_dict


def setup_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure structlog for structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines when True, human-readable console output otherwise
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        mask_cpf_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = (
        structlog.processors.JSONRenderer(ensure_ascii=False)
        if json_format
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger bound to ``name`` (usually the module's __name__)."""
    return structlog.get_logger(name)
