"""
Deployment and processing orchestration.

Applies a synchronized target graph to a metadata store as one
createOrReplace script, collects credentials for impersonating
connections, then refreshes the requested tables on a background
thread while reporting per-table progress.

Progress events arrive from the store's subscription on arbitrary
threads; they are queued and handled by a single consumer thread, which
is the only writer of the per-table row counters.
"""

from __future__ import annotations


import queue
import threading
import xml.etree.ElementTree as ElementTree
from enum import Enum

from tabular_sync.config.settings import ProcessingOption, SyncOptions
from tabular_sync.core.events import (
    CredentialCallback,
    CredentialRequest,
    DeploymentComplete,
    DeploymentCompleteCallback,
    DeploymentMessage,
    DeploymentMessageCallback,
    DeploymentStatus,
    ignore_message,
)
from tabular_sync.core.model_graph import ModelGraph
from tabular_sync.core.processing import ProcessingTableCollection
from tabular_sync.core.scripting import final_validation, script_database
from tabular_sync.core.store import (
    ConnectionCredentials,
    DatabaseHandle,
    MetadataStore,
    ProgressEvent,
    RefreshType,
    StoreSession,
    Subscription,
)
from tabular_sync.utils.exceptions import (
    ApplyError,
    CancelledByUser,
    ConnectionError,
    ProcessingError,
    TransactionError,
)
from tabular_sync.utils.logger import get_logger

logger = get_logger(__name__)

DEPLOY_ROW_WORK_ITEM = "Deploy metadata"
ROLLED_BACK_MESSAGE = "Rolled back transaction."

_STOP_CONSUMER = object()


class DeploymentState(str, Enum):
    """Phases of a deployment."""

    IDLE = "idle"
    VALIDATING = "validating"
    SCRIPTING = "scripting"
    APPLYING = "applying"
    COLLECTING_CREDENTIALS = "collecting-credentials"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentState.COMPLETED, DeploymentState.FAILED, DeploymentState.CANCELLED)


class DeploymentOrchestrator:
    """
    Drives one deployment from validation to processing.

    Args:
        store: Adapter for the server hosting the database.
        options: Processing and transaction options.
        on_message: Receives per-work-item progress.
        on_complete: Receives the terminal status, exactly once per deployment.
        on_credentials: Asked for credentials of impersonating connections.
    """

    def __init__(
        self,
        store: MetadataStore,
        options: SyncOptions | None = None,
        on_message: DeploymentMessageCallback = ignore_message,
        on_complete: DeploymentCompleteCallback = ignore_message,
        on_credentials: CredentialCallback | None = None,
    ) -> None:
        self._store = store
        self._options = options or SyncOptions()
        self._on_message = on_message
        self._on_complete = on_complete
        self._on_credentials = on_credentials

        self._state = DeploymentState.IDLE
        self._state_lock = threading.Lock()
        self._transaction_lock = threading.Lock()
        self._tables = ProcessingTableCollection()

        self._session: StoreSession | None = None
        self._session_id: str | None = None
        self._direct_query = False
        self._stop_requested = threading.Event()
        self._in_transaction = False
        self._rolled_back = False
        self._rollback_error: Exception | None = None
        self._completed = False

        self._events: queue.Queue = queue.Queue()
        self._worker: threading.Thread | None = None
        self._consumer: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> DeploymentState:
        return self._state

    @property
    def tables(self) -> ProcessingTableCollection:
        return self._tables

    def script(self, graph: ModelGraph, database_name: str | None = None) -> str:
        """Validate and script the graph without contacting the store."""
        self._set_state(DeploymentState.VALIDATING)
        final_validation(graph)
        self._set_state(DeploymentState.SCRIPTING)
        script = script_database(graph, database_name)
        self._set_state(DeploymentState.IDLE)
        return script

    def apply(self, graph: ModelGraph, server: str, database_name: str) -> None:
        """
        Apply the graph's metadata without processing.

        Unlike ``deploy_and_process`` this raises on failure.

        Raises:
            ValidationError: If the model fails final validation.
            ConnectionError: If the store is unreachable.
            ApplyError: If the store rejects the script.
        """
        self._session = None
        self._set_state(DeploymentState.VALIDATING)
        try:
            self._update_with_script(graph, server, database_name)
        except Exception:
            self._set_state(DeploymentState.FAILED)
            raise
        finally:
            self._disconnect(self._session)
        self._set_state(DeploymentState.COMPLETED)

    def deploy_and_process(
        self,
        graph: ModelGraph,
        tables: list[str],
        server: str,
        database_name: str,
        has_structural_changes: bool = True,
    ) -> None:
        """
        Apply the graph and start processing ``tables`` in the background.

        Returns once processing has been started, or once the deployment
        has ended without processing. Every outcome is reported through
        the callbacks; nothing is raised.

        Args:
            graph: The synchronized target graph.
            tables: Names of tables to refresh.
            server: Address of the server.
            database_name: Name of the database to deploy to.
            has_structural_changes: When no tables are requested, whether a
                calculation refresh is still needed.
        """
        self._reset(tables)
        self._direct_query = graph.is_direct_query

        try:
            self._set_state(DeploymentState.VALIDATING)
            session, database = self._update_with_script(graph, server, database_name)
            self._tables.assign_ids(database.table_ids)

            self._set_state(DeploymentState.COLLECTING_CREDENTIALS)
            credentials = self._collect_credentials(graph)
        except CancelledByUser:
            self._disconnect(self._session)
            self._report_cancelled()
            return
        except Exception as exc:
            logger.error(f"Deployment failed: {exc}")
            self._disconnect(self._session)
            self._message(DEPLOY_ROW_WORK_ITEM, "Error deploying metadata.", DeploymentStatus.ERROR)
            for table in self._tables:
                self._message(table.name, "Error", DeploymentStatus.ERROR)
            self._set_state(DeploymentState.FAILED)
            self._complete(DeploymentStatus.ERROR, str(exc))
            return

        self._message(DEPLOY_ROW_WORK_ITEM, "Success. Metadata deployed.", DeploymentStatus.SUCCESS)

        if self._options.processing_option == ProcessingOption.DO_NOT_PROCESS:
            self._set_state(DeploymentState.COMPLETED)
            self._complete(DeploymentStatus.SUCCESS)
            self._disconnect(session)
            return

        self._set_state(DeploymentState.PROCESSING)
        self._worker = threading.Thread(
            target=self._process,
            args=(session, database, credentials, has_structural_changes),
            name="tabular-sync-process",
            daemon=True,
        )
        self._worker.start()

    def stop_processing(self) -> None:
        """
        Request that processing stop.

        Inside a transaction the transaction is rolled back at once;
        otherwise the next progress event issues a cancel for the session.
        """
        self._stop_requested.set()
        logger.info("Stop processing requested")

        with self._transaction_lock:
            if self._options.transaction and self._in_transaction and self._session:
                self._rollback(self._session)

    def _rollback(self, session: StoreSession) -> None:
        try:
            self._store.rollback_transaction(session)
            self._in_transaction = False
            self._rolled_back = True
            logger.info(ROLLED_BACK_MESSAGE)
        except Exception as exc:
            logger.error(f"Rollback failed: {exc}")
            self._rollback_error = TransactionError(
                f"Failed to roll back transaction: {exc}",
                operation="rollback",
                rollback_performed=False,
            )

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for background processing; True if it has finished."""
        if self._worker is None:
            return True
        self._worker.join(timeout)
        return not self._worker.is_alive()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _update_with_script(
        self, graph: ModelGraph, server: str, database_name: str
    ) -> tuple[StoreSession, DatabaseHandle]:
        final_validation(graph)

        self._set_state(DeploymentState.SCRIPTING)
        script = script_database(graph, database_name)

        self._set_state(DeploymentState.APPLYING)
        session = self._store.connect(server)
        self._session = session

        result = self._store.execute(session, script)
        if result.contains_errors:
            raise ApplyError("Store rejected the deployment script", errors=result.errors)

        database = self._store.find_database(session, database_name)
        if database is None:
            raise ConnectionError(
                f"Database '{database_name}' not found after deployment",
                service=server,
            )
        logger.info(f"Deployed metadata for database '{database_name}'")
        return session, database

    def _collect_credentials(self, graph: ModelGraph) -> list[ConnectionCredentials]:
        credentials: list[ConnectionCredentials] = []
        for connection in graph.connections.values():
            if not connection.requires_credentials:
                continue
            if self._on_credentials is None:
                raise CancelledByUser(
                    f"No credential provider for connection '{connection.name}'",
                    details={"connection": connection.name},
                )
            response = self._on_credentials(
                CredentialRequest(connection_name=connection.name, account=connection.account)
            )
            if response is None or response.cancelled:
                raise CancelledByUser(
                    "Credential collection cancelled",
                    details={"connection": connection.name},
                )
            credentials.append(
                ConnectionCredentials(
                    connection_name=connection.name,
                    account=response.account,
                    password=response.password,
                )
            )
        return credentials

    def _process(
        self,
        session: StoreSession,
        database: DatabaseHandle,
        credentials: list[ConnectionCredentials],
        has_structural_changes: bool,
    ) -> None:
        refresh_type = (
            RefreshType.AUTOMATIC
            if self._options.processing_option == ProcessingOption.DEFAULT
            else RefreshType.FULL
        )
        self._session_id = session.session_id
        subscription: Subscription | None = None
        row_counts: dict[str, int] = {}
        error: Exception | None = None

        self._consumer = threading.Thread(
            target=self._consume_events, name="tabular-sync-progress", daemon=True
        )
        self._consumer.start()

        try:
            subscription = self._store.subscribe_progress(session, self._events.put)

            if self._options.transaction:
                with self._transaction_lock:
                    self._store.begin_transaction(session)
                    self._in_transaction = True
                    # A stop that arrived before the transaction existed
                    if self._stop_requested.is_set():
                        self._rollback(session)

            if not self._rolled_back and self._rollback_error is None:
                self._refresh(session, database, refresh_type, credentials, has_structural_changes)

            if self._in_transaction and not self._rolled_back:
                try:
                    self._store.commit_transaction(session)
                except Exception as exc:
                    raise ProcessingError(f"Failed to commit transaction: {exc}") from exc
                self._in_transaction = False

            if not self._rolled_back:
                for table in self._tables:
                    row_counts[table.name] = (
                        0
                        if self._direct_query
                        else self._store.find_row_count(session, database, table.name)
                    )
        except Exception as exc:
            error = exc
        finally:
            self._teardown(subscription)
            self._disconnect(session)

        self._finish_processing(row_counts, error)

    def _refresh(
        self,
        session: StoreSession,
        database: DatabaseHandle,
        refresh_type: RefreshType,
        credentials: list[ConnectionCredentials],
        has_structural_changes: bool,
    ) -> None:
        if len(self._tables) > 0:
            for table in self._tables:
                if table.name not in database.table_ids:
                    continue
                try:
                    self._store.request_refresh(session, database, refresh_type, table.name)
                except Exception as exc:
                    raise ProcessingError(
                        f"Refresh request failed: {exc}", table=table.name
                    ) from exc
        elif has_structural_changes:
            try:
                self._store.request_refresh(session, database, RefreshType.CALCULATE)
            except Exception as exc:
                raise ProcessingError(f"Recalculation request failed: {exc}") from exc

        try:
            self._store.save_changes(session, database, credentials)
        except Exception as exc:
            raise ProcessingError(f"Failed to save changes: {exc}") from exc

    def _finish_processing(self, row_counts: dict[str, int], error: Exception | None) -> None:
        if self._rolled_back:
            if error is not None:
                logger.debug(f"Ignoring error after rollback: {error}")
            self._show_errors_for_all_rows()
            self._set_state(DeploymentState.CANCELLED)
            self._complete(DeploymentStatus.ERROR, ROLLED_BACK_MESSAGE)
            return

        if self._rollback_error is not None:
            self._show_errors_for_all_rows()
            self._set_state(DeploymentState.FAILED)
            self._complete(DeploymentStatus.ERROR, str(self._rollback_error))
            return

        if error is not None:
            if self._stop_requested.is_set():
                logger.info(f"Processing cancelled: {error}")
                for table in self._tables:
                    self._message(table.name, "Cancelled", DeploymentStatus.CANCEL)
                self._set_state(DeploymentState.CANCELLED)
                self._complete(DeploymentStatus.CANCEL)
                return
            logger.error(f"Processing failed: {error}")
            self._show_errors_for_all_rows()
            self._set_state(DeploymentState.FAILED)
            self._complete(DeploymentStatus.ERROR, str(error))
            return

        for name, row_count in row_counts.items():
            self._message(name, f"Success. {row_count:,} rows transferred.", DeploymentStatus.SUCCESS)
        self._set_state(DeploymentState.COMPLETED)
        self._complete(DeploymentStatus.SUCCESS)

    # ------------------------------------------------------------------
    # Progress events
    # ------------------------------------------------------------------

    def _consume_events(self) -> None:
        while True:
            event = self._events.get()
            if event is _STOP_CONSUMER:
                break
            self._handle_progress_event(event)

    def _handle_progress_event(self, event: ProgressEvent) -> None:
        if not event.object_name or not event.object_reference:
            return
        if event.session_id != self._session_id:
            return

        table_id, partition_id = parse_object_reference(event.object_reference)
        if table_id is not None and partition_id is not None:
            table = self._tables.record_progress(table_id, partition_id, event.integer_data)
            if table is not None:
                self._message(
                    table.name,
                    f"Retrieved {table.get_row_count():,} rows ...",
                    DeploymentStatus.DEPLOYING,
                )

        # Transactions are rolled back in stop_processing instead
        if self._stop_requested.is_set() and not self._options.transaction:
            try:
                self._store.cancel(self._session, self._session_id)
            except Exception as exc:
                logger.debug(f"Cancel command failed: {exc}")

    def _teardown(self, subscription: Subscription | None) -> None:
        if subscription is not None:
            try:
                subscription.close()
            except Exception as exc:
                logger.warning(f"Failed to close progress subscription: {exc}")
        self._events.put(_STOP_CONSUMER)
        if self._consumer is not None:
            self._consumer.join()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reset(self, tables: list[str]) -> None:
        self._tables = ProcessingTableCollection.from_names(tables)
        self._stop_requested.clear()
        self._in_transaction = False
        self._rolled_back = False
        self._rollback_error = None
        self._completed = False
        self._session = None
        self._session_id = None
        self._events = queue.Queue()

    def _report_cancelled(self) -> None:
        logger.info("Deployment cancelled during credential collection")
        self._message(DEPLOY_ROW_WORK_ITEM, "Deployment has been cancelled.", DeploymentStatus.CANCEL)
        for table in self._tables:
            self._message(table.name, "Cancelled", DeploymentStatus.CANCEL)
        self._set_state(DeploymentState.CANCELLED)
        self._complete(DeploymentStatus.CANCEL)

    def _show_errors_for_all_rows(self) -> None:
        if self._options.transaction:
            self._message(DEPLOY_ROW_WORK_ITEM, "Error", DeploymentStatus.ERROR)
        for table in self._tables:
            self._message(table.name, "Error", DeploymentStatus.ERROR)

    def _disconnect(self, session: StoreSession | None) -> None:
        if session is None:
            return
        try:
            self._store.disconnect(session)
        except Exception as exc:
            logger.warning(f"Failed to disconnect from store: {exc}")

    def _set_state(self, state: DeploymentState) -> None:
        with self._state_lock:
            if state != self._state:
                logger.info(f"Deployment state: {self._state.value} -> {state.value}")
            self._state = state

    def _message(self, work_item: str, text: str, status: DeploymentStatus) -> None:
        self._on_message(DeploymentMessage(work_item=work_item, message=text, status=status))

    def _complete(self, status: DeploymentStatus, error_message: str | None = None) -> None:
        with self._state_lock:
            if self._completed:
                return
            self._completed = True
        self._on_complete(DeploymentComplete(status=status, error_message=error_message))


def parse_object_reference(object_reference: str) -> tuple[str | None, str | None]:
    """
    Extract the table and partition ids from a progress event's object reference.

    Returns:
        ``(table_id, partition_id)``; either is None when absent or unparsable.
    """
    try:
        root = ElementTree.fromstring(object_reference)
    except ElementTree.ParseError:
        logger.debug(f"Unparsable object reference: {object_reference!r}")
        return None, None

    table = next(root.iter("Table"), None)
    partition = next(root.iter("Partition"), None)
    return (
        table.text if table is not None else None,
        partition.text if partition is not None else None,
    )
