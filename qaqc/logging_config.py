"""
Structured logging configuration for the QAQC engine.

Operational logs go to stderr so they never interleave with the reviewer
prompts written to stdout.
"""

import logging
import sys
from typing import Any, Dict

import structlog

SERVICE_NAME = "field-qaqc"


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """
    Route structlog through the stdlib root logger on stderr.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: 'console' for reviewers at a terminal, 'json' for captured runs
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_service_context,
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def log_pass_event(logger, event_type: str, pass_name: str, filename: str, **counts) -> None:
    """One 'QAQC pass event' line per pass start/finish, with the pass counters."""
    logger.info(
        "QAQC pass event",
        event_type=event_type,
        pass_name=pass_name,
        filename=filename,
        **counts
    )
