# Structured logging with run IDs

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Context variable for the ingestion run ID
run_id_ctx: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def get_run_id() -> str:
    """Get or create the run ID for the current context"""
    run_id = run_id_ctx.get()
    if run_id is None:
        run_id = uuid.uuid4().hex[:12]
        run_id_ctx.set(run_id)
    return run_id


def set_run_id(run_id: Optional[str]) -> None:
    """Set the run ID for the current context"""
    run_id_ctx.set(run_id)


def add_run_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add run ID to log event"""
    run_id = run_id_ctx.get()
    if run_id:
        event_dict["run_id"] = run_id
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Setup structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "json" for machine output, "console" for a dev renderer

    Logs go to stderr so the run summary on stdout stays readable.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_run_id,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)
