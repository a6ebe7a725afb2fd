"""Logging infrastructure for accessgraph.

Every record emitted under the ``accessgraph`` logger is stamped with the
tenant and subject being resolved, taken from the active ``log_context``.
Resolution runs on pool threads, so the service enters the context inside
the computation itself rather than relying on the caller's thread.
"""

import contextvars
import logging
import logging.handlers
import os
from contextlib import contextmanager
from typing import Iterator, List, Optional

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] [tenant=%(tenant_id)s %(subject)s] %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_tenant_id = contextvars.ContextVar("accessgraph_tenant_id", default="-")
_subject = contextvars.ContextVar("accessgraph_subject", default="-")


@contextmanager
def log_context(tenant_id: Optional[str] = None, subject: Optional[str] = None) -> Iterator[None]:
    """Attach a tenant and subject to the records logged inside the block."""
    tokens = []
    if tenant_id is not None:
        tokens.append((_tenant_id, _tenant_id.set(str(tenant_id))))
    if subject is not None:
        tokens.append((_subject, _subject.set(str(subject))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class TenantContextFilter(logging.Filter):
    """Copies the active log_context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "tenant_id"):
            record.tenant_id = _tenant_id.get()
        if not hasattr(record, "subject"):
            record.subject = _subject.get()
        return True


def _build_handlers(
    name: str,
    log_dir: str,
    file_logging: bool,
    console_logging: bool,
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if file_logging:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{name}.log"), maxBytes=max_bytes, backupCount=backup_count
        ))
    if console_logging:
        handlers.append(logging.StreamHandler())
    return handlers


def setup_logger(
    name: str = "accessgraph",
    log_dir: str = "/var/log/accessgraph",
    level: str = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    file_logging: bool = True,
    console_logging: bool = True,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Set up a logger whose handlers carry the tenant/subject context.

    Module loggers in the package are children of ``accessgraph`` so
    configuring the package logger once covers the resolver, the cache,
    the stores and the flag evaluator.

    Args:
        name: Logger name (typically the package or a component name)
        log_dir: Directory for log files
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom format; may use %(tenant_id)s and %(subject)s
        date_format: Custom date format string (ISO 8601 by default)
        file_logging: Enable rotating file logging
        console_logging: Enable console logging
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep

    Returns:
        Configured logger instance
    """
    level_upper = level.upper()
    if level_upper not in LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of: {', '.join(LEVELS)}")

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level_upper))

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        log_format or DEFAULT_FORMAT, datefmt=date_format or DEFAULT_DATE_FORMAT
    )
    context_filter = TenantContextFilter()
    for handler in _build_handlers(
        name, log_dir, file_logging, console_logging, max_bytes, backup_count
    ):
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        logger.addHandler(handler)

    return logger


def configure_from_settings(settings) -> logging.Logger:
    """Configure the package logger from a Settings instance."""
    return setup_logger(
        name="accessgraph",
        log_dir=settings.log_dir,
        level=settings.log_level,
        file_logging=settings.file_logging,
    )


def get_logger(name: str) -> logging.Logger:
    """Get an existing logger by name."""
    return logging.getLogger(name)
