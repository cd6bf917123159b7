"""Logging and Logfire tracing for the circulation services."""

import functools
import logging
from collections.abc import Callable
from datetime import datetime

import logfire

from .config import ServiceSettings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: ServiceSettings) -> None:
    level = "DEBUG" if settings.debug else settings.log_level
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT)


def configure_observability(settings: ServiceSettings) -> None:
    """Configure logging and Logfire once per process."""
    configure_logging(settings)
    logfire.configure(
        token=settings.logfire_token,
        service_name=settings.service_name,
        environment=settings.environment,
        send_to_logfire=settings.logfire_send,
        console=False,
    )
    logger.debug("Observability configured for %s", settings.service_name)


def trace_operation(operation: str):
    """Decorator wrapping a workflow operation in a Logfire span."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with logfire.span(f"operation.{operation}", operation=operation) as span:
                start_time = datetime.now()
                _add_attributes(span, "input", kwargs)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("operation.success", False)
                    span.set_attribute("operation.error", type(e).__name__)
                    raise
                span.set_attribute("operation.success", True)
                span.set_attribute(
                    "operation.duration_ms", (datetime.now() - start_time).total_seconds() * 1000
                )
                return result

        return wrapper

    return decorator


def _add_attributes(span, prefix: str, data: dict):
    for key, value in data.items():
        if isinstance(value, str | int | float | bool):
            span.set_attribute(f"{prefix}.{key}", value)
