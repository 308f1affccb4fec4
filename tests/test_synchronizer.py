"""
Unit tests for EntitySynchronizer.
"""

import pytest

from tabular_sync.config.settings import SyncOptions
from tabular_sync.core.backup import DependentObjectBackup
from tabular_sync.core.models import (
    Culture,
    DataSource,
    Measure,
    ObjectTranslation,
    ObjectType,
    Perspective,
    PerspectiveColumn,
    PerspectiveTable,
    Relationship,
    Role,
    Table,
    TablePermission,
)
from tabular_sync.core.synchronizer import EntitySynchronizer, rebuild_table
from tabular_sync.utils.exceptions import SyncError

from tests.fixtures.sample_models import create_sales_graph, make_table


@pytest.fixture
def target():
    return create_sales_graph()


@pytest.fixture
def synchronizer(target):
    return EntitySynchronizer(target)


def _table(name, columns, data_source="SqlServer Sales"):
    return Table.model_validate(make_table(name, columns, data_source=data_source))


class TestConnections:
    """Tests for connection operations."""

    def test_create_connection_clears_password(self, synchronizer, target):
        source = DataSource(name="Oracle", account="svc", password="secret")

        created = synchronizer.create_connection(source)

        assert created.password is None
        assert target.connections["Oracle"] is created
        assert source.password is not None

    def test_update_connection_patches_in_place(self, synchronizer, target):
        existing = target.connections["SqlServer Sales"]
        source = DataSource(name="SqlServer Sales", connection_string="Data Source=sql02", account="svc")

        synchronizer.update_connection(source, existing)

        assert target.connections["SqlServer Sales"] is existing
        assert existing.connection_string == "Data Source=sql02"
        assert existing.account == "svc"

    def test_delete_connection(self, synchronizer, target):
        synchronizer.delete_connection("SqlServer Sales")

        assert target.connections == {}


class TestTables:
    """Tests for table operations."""

    def test_create_table_without_measures(self, synchronizer, target):
        source = _table("Store", ["StoreKey"])
        source.measures.append(Measure(name="Stores", expression="COUNTROWS(Store)"))

        created = synchronizer.create_table(source)

        assert created.measures == []
        assert source.measures
        assert target.tables["Store"] is created

    def test_create_table_missing_data_source(self, synchronizer):
        with pytest.raises(SyncError) as exc_info:
            synchronizer.create_table(_table("Store", ["StoreKey"], data_source="Missing"))

        assert exc_info.value.entity_type == "table"
        assert exc_info.value.entity_name == "Store"

    def test_delete_table_removes_relationships(self, synchronizer, target):
        removed = synchronizer.delete_table("Sales")

        assert {r.name for r in removed} == {"rel-customer", "rel-product", "rel-date"}
        assert target.relationships == {}

    def test_update_table_reattaches_relationships(self, synchronizer, target):
        source = _table("Customer", ["CustomerKey", "Name", "Region", "Segment"])

        result = synchronizer.update_table(source, target.tables["Customer"])

        assert [r.name for r in result.reattached_relationships] == ["rel-customer"]
        assert result.dropped_relationships == []
        assert "rel-customer" in target.relationships
        assert target.find_column("Customer", "Segment") is not None

    def test_update_table_drops_relationships_without_endpoint(self, synchronizer, target):
        source = _table("Customer", ["Id", "Name"])

        result = synchronizer.update_table(source, target.tables["Customer"])

        assert [r.name for r in result.dropped_relationships] == ["rel-customer"]
        assert "rel-customer" not in target.relationships
        assert "rel-date" in target.relationships

    def test_update_table_keeps_target_measures(self, synchronizer, target):
        source = _table("Sales", ["SalesKey", "CustomerKey", "ProductKey", "DateKey", "Amount", "Qty"])

        result = synchronizer.update_table(source, target.tables["Sales"])

        assert result.restored_measures == ["Total Sales"]
        assert target.find_measure("Sales", "Total Sales").expression == "SUM(Sales[Amount])"

    def test_rebuild_table_leaves_target_untouched(self, target):
        source = _table("Customer", ["Id"])

        table, dropped = rebuild_table(target, source, target.tables["Customer"])

        assert [c.name for c in table.columns] == ["Id"]
        assert [r.name for r in dropped] == ["rel-customer"]
        assert target.find_column("Customer", "CustomerKey") is not None
        assert "rel-customer" in target.relationships


class TestRelationships:
    """Tests for relationship operations."""

    def test_create_relationship_is_flagged_as_copied(self, synchronizer, target):
        source = Relationship(
            name="rel-region",
            from_table="Sales",
            from_column="SalesKey",
            to_table="Customer",
            to_column="Region",
            name_modified=True,
        )

        created = synchronizer.create_relationship(source)

        assert created.copied_from_source is True
        assert created.name_modified is False
        assert target.relationships["rel-region"] is created
        assert source.copied_from_source is False

    def test_create_relationship_missing_column(self, synchronizer):
        source = Relationship(
            name="bad",
            from_table="Sales",
            from_column="StoreKey",
            to_table="Customer",
            to_column="CustomerKey",
        )

        with pytest.raises(SyncError):
            synchronizer.create_relationship(source)

    def test_update_relationship_replaces_target(self, synchronizer, target):
        existing = target.relationships["rel-date"]
        source = existing.model_copy(update={"is_active": False})

        updated = synchronizer.update_relationship(source, existing)

        assert target.relationships["rel-date"] is updated
        assert updated.is_active is False


class TestMeasures:
    """Tests for measure operations."""

    def test_create_measure_on_missing_table(self, synchronizer):
        with pytest.raises(SyncError):
            synchronizer.create_measure("Store", Measure(name="Stores"))

    def test_create_duplicate_measure(self, synchronizer):
        with pytest.raises(SyncError):
            synchronizer.create_measure("Sales", Measure(name="Total Sales"))

    def test_update_measure_replaces_expression(self, synchronizer, target):
        synchronizer.update_measure("Sales", Measure(name="Total Sales", expression="1"))

        assert len(target.tables["Sales"].measures) == 1
        assert target.find_measure("Sales", "Total Sales").expression == "1"

    def test_delete_measure(self, synchronizer, target):
        synchronizer.delete_measure("Sales", "Total Sales")

        assert target.tables["Sales"].measures == []


class TestPerspectives:
    """Tests for perspective merge and replace."""

    def _source(self):
        return Perspective(
            name="Sales Overview",
            tables=[
                PerspectiveTable(
                    name="Customer",
                    columns=[PerspectiveColumn(name="Region"), PerspectiveColumn(name="Missing")],
                ),
                PerspectiveTable(name="Store", columns=[PerspectiveColumn(name="StoreKey")]),
            ],
        )

    def test_create_perspective_skips_unresolved_entries(self, target):
        target.remove_perspective("Sales Overview")
        synchronizer = EntitySynchronizer(target)

        created = synchronizer.create_perspective(self._source())

        assert [t.name for t in created.tables] == ["Customer"]
        assert [c.name for c in created.tables[0].columns] == ["Region"]

    def test_replace_discards_target_entries(self, target):
        backup = DependentObjectBackup()
        backup.take(target)
        synchronizer = EntitySynchronizer(target, SyncOptions(merge_perspectives=False), backup)

        updated = synchronizer.update_perspective(self._source(), target.perspectives["Sales Overview"])

        assert [t.name for t in updated.tables] == ["Customer"]
        assert [c.name for c in updated.tables[0].columns] == ["Region"]

    def test_merge_keeps_target_entries(self, target):
        backup = DependentObjectBackup()
        backup.take(target)
        synchronizer = EntitySynchronizer(target, SyncOptions(merge_perspectives=True), backup)

        updated = synchronizer.update_perspective(self._source(), target.perspectives["Sales Overview"])

        customer = updated.find_table("Customer")
        assert [c.name for c in customer.columns] == ["Name", "Region"]
        assert updated.find_table("Sales") is not None
        assert updated.find_table("Product").hierarchies[0].name == "Categories"

    def test_merge_without_backup_replaces(self, target):
        synchronizer = EntitySynchronizer(target, SyncOptions(merge_perspectives=True))

        updated = synchronizer.update_perspective(self._source(), target.perspectives["Sales Overview"])

        assert [t.name for t in updated.tables] == ["Customer"]


class TestCultures:
    """Tests for culture merge and replace."""

    def _source(self):
        return Culture(
            name="fr-FR",
            object_translations=[
                ObjectTranslation(object_type=ObjectType.TABLE, name="Customer", value="Clientèle"),
                ObjectTranslation(object_type=ObjectType.TABLE, name="Store", value="Magasin"),
            ],
        )

    def test_replace_keeps_only_source_translations(self, target):
        synchronizer = EntitySynchronizer(target, SyncOptions(merge_cultures=False))

        updated = synchronizer.update_culture(self._source(), target.cultures["fr-FR"])

        assert [(t.name, t.value) for t in updated.object_translations] == [("Customer", "Clientèle")]

    def test_merge_overwrites_matching_translation(self, target):
        backup = DependentObjectBackup()
        backup.take(target)
        synchronizer = EntitySynchronizer(target, SyncOptions(merge_cultures=True), backup)

        updated = synchronizer.update_culture(self._source(), target.cultures["fr-FR"])

        values = {(t.object_type, t.name): t.value for t in updated.object_translations}
        assert values[(ObjectType.TABLE, "Customer")] == "Clientèle"
        assert values[(ObjectType.MEASURE, "Total Sales")] == "Ventes totales"
        assert (ObjectType.TABLE, "Store") not in values
        assert len(updated.object_translations) == 7

    def test_translation_for_recreated_measure_survives(self, target):
        synchronizer = EntitySynchronizer(target)
        culture = target.cultures["fr-FR"]
        synchronizer.delete_culture("fr-FR")

        synchronizer.update_measure("Sales", Measure(name="Total Sales", expression="2"))
        restored = synchronizer.create_culture(culture)

        assert any(
            t.object_type == ObjectType.MEASURE and t.value == "Ventes totales"
            for t in restored.object_translations
        )


class TestRoles:
    """Tests for role operations."""

    def test_create_role_drops_missing_table_permissions(self, synchronizer, target):
        source = Role(
            name="Store Managers",
            table_permissions=[
                TablePermission(name="Store", filter_expression="TRUE()"),
                TablePermission(name="Sales", filter_expression="TRUE()"),
            ],
        )

        created = synchronizer.create_role(source)

        assert [p.name for p in created.table_permissions] == ["Sales"]
        assert len(source.table_permissions) == 2

    def test_roles_cleanup(self, synchronizer, target):
        target.remove_table("Customer")

        synchronizer.roles_cleanup()

        assert [p.name for p in target.roles["West Readers"].table_permissions] == ["Sales"]

    def test_update_role(self, synchronizer, target):
        source = target.roles["West Readers"].model_copy(deep=True, update={"model_permission": "none"})

        updated = synchronizer.update_role(source, target.roles["West Readers"])

        assert target.roles["West Readers"] is updated
        assert updated.model_permission == "none"
