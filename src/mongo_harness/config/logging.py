"""Logging configuration using structlog for structured logging."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from structlog.types import FilteringBoundLogger

_SENSITIVE_KEYS = {
    "password",
    "pwd",
    "secret",
    "credentials",
    "token",
    "key_file",
    "authorization",
}


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_logs: bool = False,
) -> FilteringBoundLogger:
    """Configure structured logging with structlog.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path for file logging
        json_logs: Whether to use JSON formatting

    Returns:
        Configured structlog logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    # Harness output goes to stderr so scenario verdicts on stdout stay clean
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )
    logging.getLogger().setLevel(numeric_level)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(file_handler)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


def get_logger(name: str, **initial_context: Any) -> FilteringBoundLogger:
    """Get a logger instance with optional initial context.

    Args:
        name: Logger name (typically __name__)
        **initial_context: Initial context to bind to logger

    Returns:
        Configured logger with bound context
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def log_duration(
    logger: FilteringBoundLogger,
    operation: str,
    duration_ms: float,
    **context: Any,
) -> None:
    """Log how long a harness operation took."""
    logger.info(
        "Operation timing",
        operation=operation,
        duration_ms=round(duration_ms, 2),
        metric_type="timing",
        **context,
    )


def sanitize_log_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Remove sensitive information from log data.

    Args:
        data: Dictionary that may contain sensitive information

    Returns:
        Sanitized dictionary with sensitive values masked
    """
    sanitized = data.copy()

    for key, value in data.items():
        if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]" if value is not None else None
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)

    return sanitized
