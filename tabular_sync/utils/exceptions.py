"""
Custom exception hierarchy for tabular-sync.

All exceptions inherit from TabularSyncError to allow catching
all application-specific errors with a single except clause.
"""

from typing import Any


class TabularSyncError(Exception):
    """Base exception for all tabular-sync errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ConfigurationError(TabularSyncError):
    """Raised when configuration is invalid or missing."""

    pass


class ConnectionError(TabularSyncError):
    """Raised when the metadata store is unreachable or the database is missing."""

    def __init__(
        self,
        message: str,
        service: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if service:
            details["service"] = service
        super().__init__(message, details)
        self.service = service


class ValidationError(TabularSyncError):
    """Raised when a precondition on the model is violated before apply."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class SyncError(TabularSyncError):
    """Raised when an entity cannot be synchronized into the target model."""

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        entity_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if entity_type:
            details["entity_type"] = entity_type
        if entity_name:
            details["entity_name"] = entity_name
        super().__init__(message, details)
        self.entity_type = entity_type
        self.entity_name = entity_name


class ApplyError(TabularSyncError):
    """Raised when the metadata store rejects the apply script."""

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        self.errors = list(errors or [])
        if self.errors:
            details["errors"] = "; ".join(self.errors)
        super().__init__(message, details)


class ProcessingError(TabularSyncError):
    """Raised when refresh or commit fails after a successful apply."""

    def __init__(
        self,
        message: str,
        table: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if table:
            details["table"] = table
        super().__init__(message, details)
        self.table = table


class CancelledByUser(TabularSyncError):
    """Raised when the user cancels credential collection or processing."""

    pass


class TransactionError(TabularSyncError):
    """Raised when a store transaction cannot be rolled back."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        rollback_performed: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        details["rollback_performed"] = rollback_performed
        super().__init__(message, details)
        self.operation = operation
        self.rollback_performed = rollback_performed


class StoreError(TabularSyncError):
    """Raised by metadata store adapters for store-side failures."""

    pass
