"""Common utilities for accessgraph."""

from .logger import configure_from_settings, get_logger, log_context, setup_logger
from .config import load_config, load_store

__all__ = [
    "configure_from_settings",
    "get_logger",
    "load_config",
    "load_store",
    "log_context",
    "setup_logger",
]
