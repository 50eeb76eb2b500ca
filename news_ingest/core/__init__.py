"""
Core utilities for the news ingestion pipeline.

Configuration, structured logging, the bounded-concurrency map and the TTL
cache shared by the services. The scheduler lives in ``core.scheduler`` and
is imported directly because it depends on the service layer.
"""

from .config import Settings, get_settings, validate_env_cli
from .logging import (
    configure_logging,
    get_logger,
    generate_correlation_id,
    log_exception,
)
from .cache import TTLCache
from .concurrency import bounded_map

__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    "validate_env_cli",
    # Logging
    "configure_logging",
    "get_logger",
    "generate_correlation_id",
    "log_exception",
    # Runtime helpers
    "TTLCache",
    "bounded_map",
]
