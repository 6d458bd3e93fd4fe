"""
structlog configuration for the API and the scheduler worker.

Production emits one JSON object per line; development renders the same
events with the console renderer. Account and execution ids bound with
`bind_execution_context` are merged into every event of the current task,
so stage code never has to pass them explicitly.
"""

import logging
import sys
from typing import Any

import structlog

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "uvicorn.access")


def setup_logging(log_level: str = "INFO", json_output: bool | None = None) -> None:
    """
    Configure structlog on top of the stdlib logging module.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_output: Force the renderer; defaults to JSON outside development
    """
    if json_output is None:
        from inbox_agent.config import settings

        json_output = settings.environment != "development"

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _drop_none_values,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level.upper())
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _drop_none_values(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in event_dict.items() if value is not None}


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_execution_context(**values: Any) -> None:
    structlog.contextvars.bind_contextvars(**values)


def clear_execution_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def log_health_check(service: str, healthy: bool, latency_ms: float, error: str | None = None):
    """Readiness check result for one dependency."""
    log = get_logger("health").bind(service=service, healthy=healthy, latency_ms=latency_ms)
    if healthy:
        log.info("Dependency healthy")
    else:
        log.error("Dependency unhealthy", error=error)


def log_request(method: str, path: str, status_code: int, duration_ms: float):
    log = get_logger("http").bind(
        method=method, path=path, status_code=status_code, duration_ms=duration_ms
    )
    if status_code >= 500:
        log.error("HTTP request failed")
    elif status_code >= 400:
        log.warning("HTTP request rejected")
    else:
        log.info("HTTP request completed")
