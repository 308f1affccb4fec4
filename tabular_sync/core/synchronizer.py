"""
Entity synchronizer.

Create, update and delete operations that bring one entity of a target
ModelGraph in line with its source counterpart. Structural updates are
delete-then-create; dependents that survive the recreation are
re-attached by name.
"""

from __future__ import annotations


import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tabular_sync.config.settings import SyncOptions
from tabular_sync.core.model_graph import ModelGraph
from tabular_sync.core.models import (
    Culture,
    DataSource,
    Measure,
    Perspective,
    PerspectiveColumn,
    PerspectiveHierarchy,
    PerspectiveMeasure,
    PerspectiveTable,
    Relationship,
    Role,
    Table,
)
from tabular_sync.utils.exceptions import SyncError
from tabular_sync.utils.logger import get_logger

if TYPE_CHECKING:
    from tabular_sync.core.backup import DependentObjectBackup

logger = get_logger(__name__)


@dataclass
class TableUpdate:
    """Outcome of a delete-then-create table update."""

    table: Table
    reattached_relationships: list[Relationship] = field(default_factory=list)
    dropped_relationships: list[Relationship] = field(default_factory=list)
    restored_measures: list[str] = field(default_factory=list)


class EntitySynchronizer:
    """
    Mutates a target ModelGraph entity by entity.

    Args:
        target: The graph being synchronized.
        options: Merge policies for perspectives and cultures.
        backup: Snapshot of the target's perspectives, cultures and roles,
            consulted by the merge policy.
    """

    def __init__(
        self,
        target: ModelGraph,
        options: SyncOptions | None = None,
        backup: DependentObjectBackup | None = None,
    ) -> None:
        self._target = target
        self._options = options or SyncOptions()
        self._backup = backup

    @property
    def target(self) -> ModelGraph:
        return self._target

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def delete_connection(self, name: str) -> None:
        if self._target.remove_connection(name) is not None:
            logger.debug(f"Deleted connection '{name}'")

    def create_connection(self, connection_source: DataSource) -> DataSource:
        connection = connection_source.model_copy(deep=True, update={"password": None})
        self._target.add_connection(connection)
        logger.debug(f"Created connection '{connection.name}'")
        return connection

    def update_connection(self, connection_source: DataSource, connection_target: DataSource) -> None:
        """Connections are not structural, so they are patched in place."""
        connection_target.connection_string = connection_source.connection_string
        connection_target.impersonation_mode = connection_source.impersonation_mode
        connection_target.account = connection_source.account
        connection_target.description = connection_source.description
        logger.debug(f"Updated connection '{connection_target.name}'")

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def delete_table(self, name: str) -> list[Relationship]:
        """
        Delete a table and all relationships it participates in.

        Returns:
            The relationships that had to be removed, so an update can add
            them back.
        """
        removed = self._target.remove_table(name)
        logger.debug(f"Deleted table '{name}' and {len(removed)} relationships")
        return removed

    def create_table(self, table_source: Table) -> Table:
        """
        Copy a source table into the target.

        Measures are not copied; they are added separately.

        Raises:
            SyncError: If a partition refers to a data source the target lacks.
        """
        table = table_source.model_copy(deep=True)

        for partition in table.partitions:
            data_source = partition.source.data_source
            if data_source is None:
                continue
            if data_source not in self._target.connections:
                raise SyncError(
                    f"Partition '{partition.name}' of table '{table.name}' refers to "
                    f"data source '{data_source}', which does not exist in the target",
                    entity_type="table",
                    entity_name=table.name,
                )
            partition.source.data_source = self._target.connections[data_source].name

        table.measures = []
        self._target.add_table(table)
        logger.debug(f"Created table '{table.name}'")
        return table

    def update_table(self, table_source: Table, table_target: Table) -> TableUpdate:
        """
        Replace a target table by the source definition.

        Relationships removed by the delete are added back when both
        endpoint columns still exist; measures of the old target table are
        copied onto the new one.
        """
        original = table_target.model_copy(deep=True)

        relationships_to_add_back = self.delete_table(table_target.name)
        table = self.create_table(table_source)
        result = TableUpdate(table=table)

        for relationship in relationships_to_add_back:
            if self._target.relationship_endpoints_exist(relationship):
                self._target.add_relationship(relationship)
                result.reattached_relationships.append(relationship)
            else:
                result.dropped_relationships.append(relationship)
                logger.info(
                    f"Relationship {relationship.display_name} dropped: an endpoint no "
                    f"longer exists after updating table '{table.name}'"
                )

        for measure in original.measures:
            self.create_measure(table.name, measure)
            result.restored_measures.append(measure.name)

        logger.debug(
            f"Updated table '{table.name}': {len(result.reattached_relationships)} "
            f"relationships re-attached, {len(result.dropped_relationships)} dropped"
        )
        return result

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def delete_relationship(self, name: str) -> None:
        if self._target.remove_relationship(name) is not None:
            logger.debug(f"Deleted relationship '{name}'")

    def create_relationship(self, relationship_source: Relationship) -> Relationship:
        """
        Copy a source relationship into the target, flagged as copied from source.

        Raises:
            SyncError: If an endpoint table or column is missing in the target.
        """
        if not self._target.relationship_endpoints_exist(relationship_source):
            raise SyncError(
                f"Relationship {relationship_source.display_name} refers to a table or "
                "column that does not exist in the target",
                entity_type="relationship",
                entity_name=relationship_source.name,
            )
        relationship = relationship_source.model_copy(
            deep=True,
            update={"copied_from_source": True, "old_name": None, "name_modified": False},
        )
        self._target.add_relationship(relationship)
        logger.debug(f"Created relationship {relationship.display_name}")
        return relationship

    def update_relationship(
        self, relationship_source: Relationship, relationship_target: Relationship
    ) -> Relationship:
        self.delete_relationship(relationship_target.name)
        return self.create_relationship(relationship_source)

    # ------------------------------------------------------------------
    # Measures
    # ------------------------------------------------------------------

    def _require_table(self, table_name: str, entity_type: str, entity_name: str) -> Table:
        table = self._target.get_table(table_name)
        if table is None:
            raise SyncError(
                f"Table '{table_name}' does not exist in the target",
                entity_type=entity_type,
                entity_name=entity_name,
            )
        return table

    def create_measure(self, table_name: str, measure_source: Measure) -> Measure:
        table = self._require_table(table_name, "measure", measure_source.name)
        if table.find_measure(measure_source.name) is not None:
            raise SyncError(
                f"Measure '{measure_source.name}' already exists on table '{table_name}'",
                entity_type="measure",
                entity_name=measure_source.name,
            )
        measure = measure_source.model_copy(deep=True)
        table.measures.append(measure)
        return measure

    def delete_measure(self, table_name: str, name: str) -> None:
        table = self._target.get_table(table_name)
        if table is not None:
            table.measures = [m for m in table.measures if m.name != name]

    def update_measure(self, table_name: str, measure_source: Measure) -> Measure:
        table = self._require_table(table_name, "measure", measure_source.name)
        measure = measure_source.model_copy(deep=True)
        for index, existing in enumerate(table.measures):
            if existing.name == measure.name:
                table.measures[index] = measure
                return measure
        table.measures.append(measure)
        return measure

    # ------------------------------------------------------------------
    # Perspectives
    # ------------------------------------------------------------------

    def delete_perspective(self, name: str) -> None:
        self._target.remove_perspective(name)

    def create_perspective(self, perspective_source: Perspective) -> Perspective:
        """Create an empty perspective and fill it with the entries the target can resolve."""
        perspective = Perspective(
            name=perspective_source.name,
            description=perspective_source.description,
        )
        self._target.add_perspective(perspective)
        self._sync_perspective(perspective_source, perspective)
        return perspective

    def update_perspective(
        self, perspective_source: Perspective, perspective_target: Perspective
    ) -> Perspective:
        """Replace or merge depending on ``SyncOptions.merge_perspectives``."""
        backed_up = None
        if self._options.merge_perspectives and self._backup is not None:
            backed_up = self._backup.find_perspective(perspective_target.name)

        self.delete_perspective(perspective_target.name)
        if backed_up is None:
            return self.create_perspective(perspective_source)

        perspective = self.create_perspective(backed_up)
        self._sync_perspective(perspective_source, perspective)
        perspective.description = perspective_source.description
        return perspective

    def _sync_perspective(self, perspective_source: Perspective, perspective_target: Perspective) -> None:
        for table_source in perspective_source.tables:
            table = self._target.get_table(table_source.name)
            if table is None:
                logger.debug(
                    f"Perspective '{perspective_target.name}': skipped table '{table_source.name}'"
                )
                continue

            table_target = perspective_target.find_table(table_source.name)
            if table_target is None:
                table_target = PerspectiveTable(name=table_source.name)
                perspective_target.tables.append(table_target)

            existing_columns = {c.name for c in table_target.columns}
            for column in table_source.columns:
                if column.name not in existing_columns and table.find_column(column.name):
                    table_target.columns.append(PerspectiveColumn(name=column.name))
                    existing_columns.add(column.name)

            existing_hierarchies = {h.name for h in table_target.hierarchies}
            for hierarchy in table_source.hierarchies:
                if hierarchy.name not in existing_hierarchies and table.find_hierarchy(hierarchy.name):
                    table_target.hierarchies.append(PerspectiveHierarchy(name=hierarchy.name))
                    existing_hierarchies.add(hierarchy.name)

            existing_measures = {m.name for m in table_target.measures}
            for measure in table_source.measures:
                if measure.name not in existing_measures and table.find_measure(measure.name):
                    table_target.measures.append(PerspectiveMeasure(name=measure.name))
                    existing_measures.add(measure.name)

    # ------------------------------------------------------------------
    # Cultures
    # ------------------------------------------------------------------

    def delete_culture(self, name: str) -> None:
        self._target.remove_culture(name)

    def create_culture(self, culture_source: Culture) -> Culture:
        culture = culture_source.model_copy(deep=True, update={"object_translations": []})
        self._target.add_culture(culture)
        self._sync_culture(culture_source, culture)
        return culture

    def update_culture(self, culture_source: Culture, culture_target: Culture) -> Culture:
        """Replace or merge depending on ``SyncOptions.merge_cultures``."""
        backed_up = None
        if self._options.merge_cultures and self._backup is not None:
            backed_up = self._backup.find_culture(culture_target.name)

        self.delete_culture(culture_target.name)
        if backed_up is None:
            return self.create_culture(culture_source)

        culture = self.create_culture(backed_up)
        self._sync_culture(culture_source, culture)
        return culture

    def _sync_culture(self, culture_source: Culture, culture_target: Culture) -> None:
        dropped = 0
        for translation_source in culture_source.object_translations:
            if not self._target.translation_target_exists(translation_source):
                dropped += 1
                continue

            translation_target = culture_target.find_translation(translation_source)
            if translation_target is not None:
                translation_target.value = translation_source.value
            else:
                culture_target.object_translations.append(
                    translation_source.model_copy(deep=True)
                )
        if dropped:
            logger.debug(
                f"Culture '{culture_target.name}': dropped {dropped} translations "
                "whose object does not exist in the target"
            )

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def delete_role(self, name: str) -> None:
        self._target.remove_role(name)

    def create_role(self, role_source: Role) -> Role:
        """Copy a role; table permissions for tables missing in the target are dropped."""
        role = role_source.model_copy(deep=True)
        kept = []
        for permission in role.table_permissions:
            if self._target.contains_table(permission.name):
                kept.append(permission)
            else:
                logger.debug(
                    f"Role '{role.name}': dropped permission on missing table '{permission.name}'"
                )
        role.table_permissions = kept
        self._target.add_role(role)
        return role

    def update_role(self, role_source: Role, role_target: Role) -> Role:
        self.delete_role(role_target.name)
        return self.create_role(role_source)

    def roles_cleanup(self) -> None:
        """Remove table permissions that refer to tables no longer in the target."""
        for role in self._target.roles.values():
            role.table_permissions = [
                p for p in role.table_permissions if self._target.contains_table(p.name)
            ]


def rebuild_table(
    target: ModelGraph, table_source: Table, table_target: Table
) -> tuple[Table, list[Relationship]]:
    """
    Delete-then-create ``table_target`` from ``table_source`` on a copy of ``target``.

    Returns:
        The recreated table and the relationships that could not be re-attached.
        ``target`` itself is left untouched.
    """
    scratch = copy.deepcopy(target)
    result = EntitySynchronizer(scratch).update_table(
        table_source, scratch.tables[table_target.name]
    )
    return result.table, result.dropped_relationships
