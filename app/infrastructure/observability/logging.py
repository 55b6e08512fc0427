"""
structlog configuration and the shared log helpers.

Every record is one JSON line carrying level, logger name, ISO timestamp
and whatever the request context bound (request_id, path). One-time
tokens and message bodies are redacted before rendering.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

REDACTED_FIELDS = frozenset({"raw_token", "token", "text_content", "authorization"})
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "stripe", "psycopg.pool")


def _redact(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for field in REDACTED_FIELDS.intersection(event_dict):
        event_dict[field] = "[redacted]"
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog for JSON output on stdout.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(**values: Any) -> None:
    """Attach fields to every log line emitted while handling this request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_job_run(job: str, metrics: dict[str, Any]) -> None:
    """One summary line per job run; the error list is reduced to its length."""
    logger = get_logger("jobs")
    errors = metrics.get("errors", [])
    summary = {k: v for k, v in metrics.items() if k != "errors"}

    if errors:
        logger.warning("Job run completed with errors", job=job, errors_count=len(errors), **summary)
    else:
        logger.info("Job run completed", job=job, **summary)


def log_request(method: str, path: str, status_code: int, duration_ms: float, user_id: str = None):
    logger = get_logger("http")
    fields = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    if user_id:
        fields["user_id"] = user_id

    if status_code >= 500:
        logger.error("HTTP request failed", **fields)
    elif status_code >= 400:
        logger.warning("HTTP request rejected", **fields)
    else:
        logger.info("HTTP request completed", **fields)
