"""Utility modules for tabular-sync."""

from tabular_sync.utils.logger import get_logger, setup_logging
from tabular_sync.utils.exceptions import (
    TabularSyncError,
    ConfigurationError,
    ConnectionError,
    ValidationError,
    SyncError,
    ApplyError,
    ProcessingError,
    CancelledByUser,
    TransactionError,
    StoreError,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "TabularSyncError",
    "ConfigurationError",
    "ConnectionError",
    "ValidationError",
    "SyncError",
    "ApplyError",
    "ProcessingError",
    "CancelledByUser",
    "TransactionError",
    "StoreError",
]
