"""
Unit tests for DeploymentOrchestrator.
"""

import json

import pytest

from tabular_sync.config.settings import ProcessingOption, SyncOptions
from tabular_sync.core.deployment import (
    DEPLOY_ROW_WORK_ITEM,
    ROLLED_BACK_MESSAGE,
    DeploymentOrchestrator,
    DeploymentState,
    parse_object_reference,
)
from tabular_sync.core.events import CredentialResponse, DeploymentStatus
from tabular_sync.core.model_graph import ModelGraph
from tabular_sync.core.models import DataSource, ImpersonationMode
from tabular_sync.core.store import RefreshType
from tabular_sync.utils.exceptions import ApplyError, ValidationError

from tests.fixtures.fake_store import FakeStore, store_failure
from tests.fixtures.sample_models import create_sales_bim, create_sales_graph

TABLE_IDS = {"Customer": "T-Customer", "Sales": "T-Sales"}


class Recorder:
    """Collects deployment callbacks."""

    def __init__(self) -> None:
        self.messages = []
        self.completions = []

    def on_message(self, message) -> None:
        self.messages.append(message)

    def on_complete(self, complete) -> None:
        self.completions.append(complete)

    def for_item(self, work_item):
        return [(m.message, m.status) for m in self.messages if m.work_item == work_item]


@pytest.fixture
def graph():
    return create_sales_graph()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def store():
    return FakeStore(table_ids=TABLE_IDS, row_counts={"Customer": 12, "Sales": 1234})


def _orchestrator(store, recorder, on_credentials=None, **options):
    return DeploymentOrchestrator(
        store,
        options=SyncOptions(**options),
        on_message=recorder.on_message,
        on_complete=recorder.on_complete,
        on_credentials=on_credentials,
    )


def _run(orchestrator, graph, tables=("Customer", "Sales"), **kwargs):
    orchestrator.deploy_and_process(graph, list(tables), "localhost", "SalesDb", **kwargs)
    assert orchestrator.wait(timeout=10)


def _direct_query_graph():
    bim = create_sales_bim()
    bim["model"]["defaultMode"] = "directQuery"
    return ModelGraph.from_bim(bim)


class TestDeployAndProcess:
    """Tests for the successful path."""

    def test_success(self, graph, store, recorder):
        orchestrator = _orchestrator(store, recorder)

        _run(orchestrator, graph)

        assert recorder.for_item(DEPLOY_ROW_WORK_ITEM) == [
            ("Success. Metadata deployed.", DeploymentStatus.SUCCESS)
        ]
        assert recorder.for_item("Sales") == [("Success. 1,234 rows transferred.", DeploymentStatus.SUCCESS)]
        assert recorder.for_item("Customer") == [("Success. 12 rows transferred.", DeploymentStatus.SUCCESS)]
        assert [c.status for c in recorder.completions] == [DeploymentStatus.SUCCESS]
        assert orchestrator.state == DeploymentState.COMPLETED
        assert store.subscription.closed
        assert store.calls[-1] == "disconnect"

    def test_script_targets_database_name(self, graph, store, recorder):
        _run(_orchestrator(store, recorder), graph)

        command = json.loads(store.scripts[0])
        assert command["createOrReplace"]["object"]["database"] == "SalesDb"

    def test_default_processing_requests_automatic_refresh(self, graph, store, recorder):
        _run(_orchestrator(store, recorder), graph)

        assert store.refreshes == [
            (RefreshType.AUTOMATIC, "Customer"),
            (RefreshType.AUTOMATIC, "Sales"),
        ]

    def test_full_processing(self, graph, store, recorder):
        _run(_orchestrator(store, recorder, processing_option=ProcessingOption.FULL), graph, tables=["Sales"])

        assert store.refreshes == [(RefreshType.FULL, "Sales")]

    def test_tables_missing_on_store_are_not_refreshed(self, graph, store, recorder):
        _run(_orchestrator(store, recorder), graph, tables=["Sales", "Product"])

        assert store.refreshes == [(RefreshType.AUTOMATIC, "Sales")]

    def test_structural_changes_without_tables_recalculate(self, graph, store, recorder):
        _run(_orchestrator(store, recorder), graph, tables=[])

        assert store.refreshes == [(RefreshType.CALCULATE, None)]
        assert [c.status for c in recorder.completions] == [DeploymentStatus.SUCCESS]

    def test_no_changes_requests_nothing(self, graph, store, recorder):
        _run(_orchestrator(store, recorder), graph, tables=[], has_structural_changes=False)

        assert store.refreshes == []
        assert "save_changes" in store.calls

    def test_do_not_process(self, graph, store, recorder):
        orchestrator = _orchestrator(store, recorder, processing_option=ProcessingOption.DO_NOT_PROCESS)

        _run(orchestrator, graph)

        assert "save_changes" not in store.calls
        assert [c.status for c in recorder.completions] == [DeploymentStatus.SUCCESS]
        assert orchestrator.state == DeploymentState.COMPLETED

    def test_direct_query_reports_zero_rows(self, store, recorder):
        _run(_orchestrator(store, recorder), _direct_query_graph(), tables=["Sales"])

        assert recorder.for_item("Sales") == [("Success. 0 rows transferred.", DeploymentStatus.SUCCESS)]


class TestDeploymentFailures:
    """Tests for failures before processing starts."""

    def test_store_rejects_script(self, graph, recorder):
        store = FakeStore(table_ids=TABLE_IDS, execute_errors=["bad column"])
        orchestrator = _orchestrator(store, recorder)

        _run(orchestrator, graph)

        assert recorder.for_item(DEPLOY_ROW_WORK_ITEM) == [
            ("Error deploying metadata.", DeploymentStatus.ERROR)
        ]
        assert recorder.for_item("Sales") == [("Error", DeploymentStatus.ERROR)]
        assert recorder.completions[0].status == DeploymentStatus.ERROR
        assert "bad column" in recorder.completions[0].error_message
        assert orchestrator.state == DeploymentState.FAILED
        assert store.calls[-1] == "disconnect"

    def test_database_missing_after_apply(self, graph, recorder):
        store = FakeStore(database_exists=False)

        _run(_orchestrator(store, recorder), graph)

        assert recorder.completions[0].status == DeploymentStatus.ERROR
        assert "SalesDb" in recorder.completions[0].error_message

    def test_direct_query_with_many_connections(self, store, recorder):
        graph = _direct_query_graph()
        graph.add_connection(DataSource(name="Second"))

        _run(_orchestrator(store, recorder), graph)

        assert "connect" not in store.calls
        assert "multiple connections" in recorder.completions[0].error_message


class TestCredentials:
    """Tests for credential collection."""

    @pytest.fixture
    def graph(self):
        graph = create_sales_graph()
        connection = graph.connections["SqlServer Sales"]
        connection.impersonation_mode = ImpersonationMode.IMPERSONATE_ACCOUNT
        connection.account = "CONTOSO\\svc"
        return graph

    def test_credentials_are_passed_to_the_store(self, graph, store, recorder):
        requests = []

        def provide(request):
            requests.append(request)
            return CredentialResponse(account=request.account, password="pw")

        _run(_orchestrator(store, recorder, on_credentials=provide), graph)

        assert [r.connection_name for r in requests] == ["SqlServer Sales"]
        assert store.credentials[0].password == "pw"
        assert store.credentials[0].account == "CONTOSO\\svc"
        assert "pw" not in store.scripts[0]

    def test_cancelled_prompt_cancels_deployment(self, graph, store, recorder):
        orchestrator = _orchestrator(
            store, recorder, on_credentials=lambda request: CredentialResponse(cancelled=True)
        )

        _run(orchestrator, graph)

        assert recorder.for_item(DEPLOY_ROW_WORK_ITEM) == [
            ("Deployment has been cancelled.", DeploymentStatus.CANCEL)
        ]
        assert recorder.for_item("Customer") == [("Cancelled", DeploymentStatus.CANCEL)]
        assert [c.status for c in recorder.completions] == [DeploymentStatus.CANCEL]
        assert orchestrator.state == DeploymentState.CANCELLED
        assert "save_changes" not in store.calls

    def test_missing_provider_cancels_deployment(self, graph, store, recorder):
        _run(_orchestrator(store, recorder), graph)

        assert [c.status for c in recorder.completions] == [DeploymentStatus.CANCEL]


class TestProgress:
    """Tests for progress events during processing."""

    def test_progress_is_reported_per_table(self, graph, store, recorder):
        def on_save(fake):
            fake.emit("T-Sales", "P1", 500)
            fake.emit("T-Sales", "P2", 1500)
            fake.emit("T-Sales", "P1", 700)

        store.on_save = on_save
        orchestrator = _orchestrator(store, recorder)

        _run(orchestrator, graph)

        progress = [m for m, s in recorder.for_item("Sales") if s == DeploymentStatus.DEPLOYING]
        assert progress == [
            "Retrieved 500 rows ...",
            "Retrieved 2,000 rows ...",
            "Retrieved 2,200 rows ...",
        ]
        assert orchestrator.tables.row_counts()["Sales"] == 2200

    def test_events_from_other_sessions_are_ignored(self, graph, store, recorder):
        store.on_save = lambda fake: fake.emit("T-Sales", "P1", 500, session_id="other")

        _run(_orchestrator(store, recorder), graph)

        assert all(m.status != DeploymentStatus.DEPLOYING for m in recorder.messages)

    def test_events_for_unrequested_tables_are_ignored(self, graph, store, recorder):
        store.on_save = lambda fake: fake.emit("T-Product", "P1", 500)

        _run(_orchestrator(store, recorder), graph, tables=["Sales"])

        assert all(m.status != DeploymentStatus.DEPLOYING for m in recorder.messages)

    @pytest.mark.parametrize(
        "reference, expected",
        [
            ("<Object><Table>T1</Table><Partition>P1</Partition></Object>", ("T1", "P1")),
            ("<Object><Database>D</Database><Table>T1</Table></Object>", ("T1", None)),
            ("not xml", (None, None)),
        ],
    )
    def test_parse_object_reference(self, reference, expected):
        assert parse_object_reference(reference) == expected


class TestStopProcessing:
    """Tests for user-requested stops."""

    def test_stop_without_transaction_cancels_session(self, graph, store, recorder):
        orchestrator = _orchestrator(store, recorder)

        def on_save(fake):
            orchestrator.stop_processing()
            fake.emit("T-Sales", "P1", 10)
            fake.save_error = store_failure("operation cancelled")

        store.on_save = on_save

        _run(orchestrator, graph)

        assert "cancel" in store.calls
        assert recorder.for_item("Sales")[-1] == ("Cancelled", DeploymentStatus.CANCEL)
        assert [c.status for c in recorder.completions] == [DeploymentStatus.CANCEL]
        assert orchestrator.state == DeploymentState.CANCELLED

    def test_stop_in_transaction_rolls_back(self, graph, store, recorder):
        orchestrator = _orchestrator(store, recorder, transaction=True)
        store.on_save = lambda fake: orchestrator.stop_processing()

        _run(orchestrator, graph)

        assert "rollback_transaction" in store.calls
        assert "commit_transaction" not in store.calls
        assert recorder.for_item(DEPLOY_ROW_WORK_ITEM)[-1] == ("Error", DeploymentStatus.ERROR)
        assert recorder.for_item("Sales") == [("Error", DeploymentStatus.ERROR)]
        assert recorder.completions[0].status == DeploymentStatus.ERROR
        assert recorder.completions[0].error_message == ROLLED_BACK_MESSAGE
        assert orchestrator.state == DeploymentState.CANCELLED

    def test_failed_rollback(self, graph, store, recorder):
        orchestrator = _orchestrator(store, recorder, transaction=True)
        store.rollback_error = store_failure("rollback refused")
        store.on_save = lambda fake: orchestrator.stop_processing()

        _run(orchestrator, graph)

        assert recorder.completions[0].status == DeploymentStatus.ERROR
        assert "rollback refused" in recorder.completions[0].error_message
        assert orchestrator.state == DeploymentState.FAILED

    def test_transaction_is_committed(self, graph, store, recorder):
        _run(_orchestrator(store, recorder, transaction=True), graph)

        assert store.calls.index("begin_transaction") < store.calls.index("commit_transaction")
        assert [c.status for c in recorder.completions] == [DeploymentStatus.SUCCESS]

    def test_stop_before_transaction_begins_rolls_back(self, store, recorder):
        graph = create_sales_graph()
        connection = graph.connections["SqlServer Sales"]
        connection.impersonation_mode = ImpersonationMode.IMPERSONATE_ACCOUNT

        def provide(request):
            orchestrator.stop_processing()
            return CredentialResponse(account="CONTOSO\\svc", password="pw")

        orchestrator = _orchestrator(store, recorder, on_credentials=provide, transaction=True)

        _run(orchestrator, graph)

        assert store.calls.index("begin_transaction") < store.calls.index("rollback_transaction")
        assert "save_changes" not in store.calls
        assert "commit_transaction" not in store.calls
        assert store.refreshes == []
        assert recorder.completions[0].error_message == ROLLED_BACK_MESSAGE
        assert orchestrator.state == DeploymentState.CANCELLED


class TestProcessingFailure:
    def test_processing_error_marks_all_rows(self, graph, store, recorder):
        store.save_error = store_failure("refresh failed")
        orchestrator = _orchestrator(store, recorder)

        _run(orchestrator, graph)

        assert recorder.for_item("Customer")[-1] == ("Error", DeploymentStatus.ERROR)
        assert recorder.for_item("Sales")[-1] == ("Error", DeploymentStatus.ERROR)
        assert len(recorder.completions) == 1
        assert recorder.completions[0].error_message == "Failed to save changes: refresh failed"
        assert orchestrator.state == DeploymentState.FAILED
        assert store.subscription.closed


class TestApply:
    """Tests for apply without processing."""

    def test_apply(self, graph, store, recorder):
        orchestrator = _orchestrator(store, recorder)

        orchestrator.apply(graph, "localhost", "SalesDb")

        assert store.calls == ["connect", "execute", "disconnect"]
        assert orchestrator.state == DeploymentState.COMPLETED
        assert recorder.completions == []

    def test_apply_raises_on_rejected_script(self, graph, recorder):
        store = FakeStore(execute_errors=["bad"])
        orchestrator = _orchestrator(store, recorder)

        with pytest.raises(ApplyError) as exc_info:
            orchestrator.apply(graph, "localhost", "SalesDb")

        assert exc_info.value.errors == ["bad"]
        assert store.calls[-1] == "disconnect"
        assert orchestrator.state == DeploymentState.FAILED

    def test_script_does_not_touch_store(self, graph, store, recorder):
        graph.add_connection(DataSource(name="Second"))
        orchestrator = _orchestrator(store, recorder)

        script = orchestrator.script(graph, "SalesDb")

        assert json.loads(script)["createOrReplace"]["database"]["name"] == "SalesDb"
        assert store.calls == []

    def test_script_validates(self, store, recorder):
        graph = _direct_query_graph()
        graph.add_connection(DataSource(name="Second"))

        with pytest.raises(ValidationError):
            _orchestrator(store, recorder).script(graph)

    def test_refresh_failure_names_the_table(self, graph, store, recorder):
        store.refresh_errors["Sales"] = store_failure("partition locked")
        orchestrator = _orchestrator(store, recorder)

        _run(orchestrator, graph)

        assert "save_changes" not in store.calls
        assert recorder.completions[0].status == DeploymentStatus.ERROR
        assert recorder.completions[0].error_message == (
            "Refresh request failed: partition locked (table=Sales)"
        )
        assert orchestrator.state == DeploymentState.FAILED
        assert store.subscription.closed

    def test_commit_failure(self, graph, store, recorder):
        store.commit_error = store_failure("commit refused")
        orchestrator = _orchestrator(store, recorder, transaction=True)

        _run(orchestrator, graph)

        assert recorder.completions[0].error_message == (
            "Failed to commit transaction: commit refused"
        )
        assert recorder.for_item("Sales")[-1] == ("Error", DeploymentStatus.ERROR)
        assert orchestrator.state == DeploymentState.FAILED
