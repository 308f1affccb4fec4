"""
Tabular Sync - synchronization of tabular semantic model definitions.

Compares a source and a target tabular model, brings the target in line
with the source while keeping the perspectives, translations and roles
that depend on unchanged objects, resolves ambiguous relationship paths,
and deploys the result through a pluggable metadata store.
"""

from __future__ import annotations


__version__ = "1.0.0"

from tabular_sync.utils.exceptions import (
    TabularSyncError,
    ConfigurationError,
    ConnectionError,
    ValidationError,
    SyncError,
    ApplyError,
    ProcessingError,
    CancelledByUser,
)

__all__ = [
    "__version__",
    "TabularSyncError",
    "ConfigurationError",
    "ConnectionError",
    "ValidationError",
    "SyncError",
    "ApplyError",
    "ProcessingError",
    "CancelledByUser",
]
