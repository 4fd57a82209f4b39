"""Utility modules for the provenance engine."""

from provenance.utils.logging import JsonFormatter, configure_logging, get_logger
from provenance.utils.retry import RetryConfig, RetryError, retry_with_backoff

__all__ = [
    "JsonFormatter",
    "RetryConfig",
    "RetryError",
    "configure_logging",
    "get_logger",
    "retry_with_backoff",
]
