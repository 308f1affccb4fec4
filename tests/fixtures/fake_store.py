"""
In-memory metadata store for deployment tests.

Records every call in ``calls``; hooks let a test emit progress events
or request a stop while ``save_changes`` is running.
"""

from __future__ import annotations


from typing import Callable

from tabular_sync.core.store import (
    ConnectionCredentials,
    DatabaseHandle,
    ExecuteResult,
    MetadataStore,
    ProgressEvent,
    ProgressSink,
    RefreshType,
    StoreSession,
    Subscription,
)
from tabular_sync.utils.exceptions import StoreError

SESSION_ID = "session-1"


class FakeSubscription(Subscription):
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeStore(MetadataStore):
    def __init__(
        self,
        table_ids: dict[str, str] | None = None,
        row_counts: dict[str, int] | None = None,
        execute_errors: list[str] | None = None,
        database_exists: bool = True,
    ) -> None:
        self.table_ids = table_ids or {}
        self.row_counts = row_counts or {}
        self.execute_errors = execute_errors or []
        self.database_exists = database_exists

        self.calls: list[str] = []
        self.scripts: list[str] = []
        self.refreshes: list[tuple[RefreshType, str | None]] = []
        self.credentials: list[ConnectionCredentials] = []
        self.sink: ProgressSink | None = None
        self.subscription = FakeSubscription()

        self.on_save: Callable[["FakeStore"], None] | None = None
        self.save_error: Exception | None = None
        self.rollback_error: Exception | None = None
        self.refresh_errors: dict[str, Exception] = {}
        self.commit_error: Exception | None = None

    def emit(self, table_id: str, partition_id: str, rows: int, session_id: str = SESSION_ID) -> None:
        """Deliver one progress event to the subscriber."""
        assert self.sink is not None
        self.sink(
            ProgressEvent(
                object_id=partition_id,
                object_name=partition_id,
                object_reference=(
                    f"<Object><Table>{table_id}</Table><Partition>{partition_id}</Partition></Object>"
                ),
                integer_data=rows,
                session_id=session_id,
            )
        )

    def connect(self, address: str) -> StoreSession:
        self.calls.append("connect")
        return StoreSession(address=address, session_id=SESSION_ID)

    def disconnect(self, session: StoreSession) -> None:
        self.calls.append("disconnect")

    def find_database(self, session: StoreSession, name: str) -> DatabaseHandle | None:
        if not self.database_exists:
            return None
        return DatabaseHandle(name=name, table_ids=dict(self.table_ids))

    def execute(self, session: StoreSession, script: str) -> ExecuteResult:
        self.calls.append("execute")
        self.scripts.append(script)
        return ExecuteResult(errors=list(self.execute_errors))

    def request_refresh(
        self,
        session: StoreSession,
        database: DatabaseHandle,
        refresh_type: RefreshType,
        table_name: str | None = None,
    ) -> None:
        self.refreshes.append((refresh_type, table_name))
        if table_name in self.refresh_errors:
            raise self.refresh_errors[table_name]

    def save_changes(
        self,
        session: StoreSession,
        database: DatabaseHandle,
        credentials: list[ConnectionCredentials],
    ) -> None:
        self.calls.append("save_changes")
        self.credentials = list(credentials)
        if self.on_save is not None:
            self.on_save(self)
        if self.save_error is not None:
            raise self.save_error

    def find_row_count(self, session: StoreSession, database: DatabaseHandle, table_name: str) -> int:
        return self.row_counts.get(table_name, 0)

    def subscribe_progress(self, session: StoreSession, sink: ProgressSink) -> Subscription:
        self.sink = sink
        return self.subscription

    def cancel(self, session: StoreSession, session_id: str) -> None:
        self.calls.append("cancel")

    def begin_transaction(self, session: StoreSession) -> None:
        self.calls.append("begin_transaction")

    def commit_transaction(self, session: StoreSession) -> None:
        self.calls.append("commit_transaction")
        if self.commit_error is not None:
            raise self.commit_error

    def rollback_transaction(self, session: StoreSession) -> None:
        self.calls.append("rollback_transaction")
        if self.rollback_error is not None:
            raise self.rollback_error


def store_failure(message: str = "refresh failed") -> StoreError:
    return StoreError(message)
