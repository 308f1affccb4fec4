"""
Metadata store adapter contract.

The deployment orchestrator talks to the server hosting the tabular
database only through this interface. Concrete adapters live outside
this package; tests use an in-memory implementation.
"""

from __future__ import annotations


from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable


class RefreshType(str, Enum):
    """Refresh requested from the store."""

    AUTOMATIC = "automatic"
    FULL = "full"
    CALCULATE = "calculate"


@dataclass(frozen=True)
class StoreSession:
    """An open connection; ``session_id`` correlates progress events."""

    address: str
    session_id: str


@dataclass(frozen=True)
class DatabaseHandle:
    """A database found on the store and the ids of its tables by name."""

    name: str
    table_ids: dict[str, str] = field(default_factory=dict)


@dataclass
class ExecuteResult:
    """Outcome of executing a script; an empty error list means success."""

    errors: list[str] = field(default_factory=list)

    @property
    def contains_errors(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class ProgressEvent:
    """
    One progress notification from the store's trace stream.

    ``object_reference`` is an XML fragment naming the table and
    partition, e.g. ``<Object><Table>T1</Table><Partition>P1</Partition></Object>``;
    ``integer_data`` is the cumulative row count of that partition.
    """

    object_id: str | None
    object_name: str | None
    object_reference: str | None
    integer_data: int
    session_id: str | None


@dataclass(frozen=True)
class ConnectionCredentials:
    """Account and password supplied for one impersonating connection."""

    connection_name: str
    account: str | None
    password: str | None


ProgressSink = Callable[[ProgressEvent], None]


class Subscription(ABC):
    """Handle for a progress subscription; close it to stop delivery."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivering events. Must be safe to call more than once."""


class MetadataStore(ABC):
    """
    Server-side operations the orchestrator needs.

    Adapters raise ``tabular_sync.utils.exceptions.StoreError`` (or
    ``ConnectionError`` from ``connect``) on failure.
    """

    @abstractmethod
    def connect(self, address: str) -> StoreSession:
        """Open a session against the server at ``address``."""

    @abstractmethod
    def disconnect(self, session: StoreSession) -> None:
        """Close a session."""

    @abstractmethod
    def find_database(self, session: StoreSession, name: str) -> DatabaseHandle | None:
        """Look up a database by name, or None if it does not exist."""

    @abstractmethod
    def execute(self, session: StoreSession, script: str) -> ExecuteResult:
        """Execute a script and report any errors."""

    @abstractmethod
    def request_refresh(
        self,
        session: StoreSession,
        database: DatabaseHandle,
        refresh_type: RefreshType,
        table_name: str | None = None,
    ) -> None:
        """Queue a refresh of one table, or of the whole model when ``table_name`` is None."""

    @abstractmethod
    def save_changes(
        self,
        session: StoreSession,
        database: DatabaseHandle,
        credentials: list[ConnectionCredentials],
    ) -> None:
        """Commit queued refreshes, passing credentials for impersonating connections."""

    @abstractmethod
    def find_row_count(self, session: StoreSession, database: DatabaseHandle, table_name: str) -> int:
        """Number of rows held by a table after processing."""

    @abstractmethod
    def subscribe_progress(self, session: StoreSession, sink: ProgressSink) -> Subscription:
        """Start delivering progress events to ``sink``, possibly from another thread."""

    @abstractmethod
    def cancel(self, session: StoreSession, session_id: str) -> None:
        """Cancel the command running on ``session_id``."""

    @abstractmethod
    def begin_transaction(self, session: StoreSession) -> None:
        """Begin a transaction on the session."""

    @abstractmethod
    def commit_transaction(self, session: StoreSession) -> None:
        """Commit the session's transaction."""

    @abstractmethod
    def rollback_transaction(self, session: StoreSession) -> None:
        """Roll back the session's transaction."""
