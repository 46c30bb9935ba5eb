"""
Utility modules for the synchronization layer.

Provides common utilities for:
- Structured logging
- Error handling
"""

from .logging import setup_logging, get_logger
from .errors import (
    SyncError,
    BackendError,
    ConnectivityError,
    ConstraintError,
    PermissionError,
    SubscriptionError,
    ConfigurationError,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "SyncError",
    "BackendError",
    "ConnectivityError",
    "ConstraintError",
    "PermissionError",
    "SubscriptionError",
    "ConfigurationError",
]
