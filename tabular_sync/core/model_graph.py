"""
In-memory graph of one tabular model.

Entities live in name-keyed collections; every cross-reference
(partition data source, relationship endpoint, perspective entry,
translation target, table permission) is a name resolved through
the lookups below at use time.
"""

from __future__ import annotations


import copy
import json
import uuid
from pathlib import Path
from typing import Any, Iterator

from tabular_sync.config.settings import RoleMemberPolicy
from tabular_sync.core.models import (
    Column,
    Culture,
    Database,
    DataSource,
    Hierarchy,
    Level,
    Measure,
    Model,
    ObjectTranslation,
    ObjectType,
    Perspective,
    Relationship,
    Role,
    RoleMember,
    Table,
)
from tabular_sync.utils.exceptions import SyncError
from tabular_sync.utils.logger import get_logger

logger = get_logger(__name__)

DIRECT_QUERY_MODE = "directQuery"


class ModelGraph:
    """
    One side (source or target) of a comparison.

    Collections preserve insertion order, which is also the order used
    for serialisation and for relationship traversal.
    """

    def __init__(self, database: Database) -> None:
        model = database.model
        self._database = database.model_copy(
            update={
                "model": model.model_copy(
                    update={
                        "data_sources": [],
                        "tables": [],
                        "relationships": [],
                        "perspectives": [],
                        "cultures": [],
                        "roles": [],
                    }
                )
            }
        )
        self.connections: dict[str, DataSource] = {}
        self.tables: dict[str, Table] = {}
        self.relationships: dict[str, Relationship] = {}
        self.perspectives: dict[str, Perspective] = {}
        self.cultures: dict[str, Culture] = {}
        self.roles: dict[str, Role] = {}

        for data_source in model.data_sources:
            self.add_connection(data_source)
        for table in model.tables:
            self.add_table(table)
        for relationship in model.relationships:
            self.add_relationship(relationship)
        for perspective in model.perspectives:
            self.add_perspective(perspective)
        for culture in model.cultures:
            self.add_culture(culture)
        for role in model.roles:
            self.add_role(role)

    # ------------------------------------------------------------------
    # Construction and serialisation
    # ------------------------------------------------------------------

    @classmethod
    def from_bim(
        cls,
        data: dict[str, Any],
        role_member_policy: RoleMemberPolicy = RoleMemberPolicy.NONE,
        server: str | None = None,
    ) -> "ModelGraph":
        """
        Build a graph from a tabular JSON database definition.

        ``server`` is the target server address; it decides what
        RoleMemberPolicy.AUTO resolves to.
        """
        graph = cls(Database.model_validate(data))
        graph.normalize_role_members(role_member_policy, server)
        logger.debug(
            f"Loaded model '{graph.name}': {len(graph.tables)} tables, "
            f"{len(graph.relationships)} relationships"
        )
        return graph

    def to_database(self) -> Database:
        model = self._database.model.model_copy(
            update={
                "data_sources": list(self.connections.values()),
                "tables": list(self.tables.values()),
                "relationships": list(self.relationships.values()),
                "perspectives": list(self.perspectives.values()),
                "cultures": list(self.cultures.values()),
                "roles": list(self.roles.values()),
            }
        )
        return self._database.model_copy(update={"model": model})

    def to_bim(self) -> dict[str, Any]:
        """Serialise to the tabular JSON shape (passwords and runtime flags excluded)."""
        return self.to_database().to_bim()

    def clone(self) -> "ModelGraph":
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Model-level properties
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._database.name

    @name.setter
    def name(self, value: str) -> None:
        self._database.name = value

    @property
    def model(self) -> Model:
        """Model-level properties; entity collections live on the graph."""
        return self._database.model

    @property
    def is_direct_query(self) -> bool:
        return self._database.model.default_mode == DIRECT_QUERY_MODE

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_table(self, name: str) -> Table | None:
        return self.tables.get(name)

    def contains_table(self, name: str) -> bool:
        return name in self.tables

    def find_column(self, table_name: str, column_name: str) -> Column | None:
        table = self.tables.get(table_name)
        return table.find_column(column_name) if table else None

    def find_measure(self, table_name: str, measure_name: str) -> Measure | None:
        table = self.tables.get(table_name)
        return table.find_measure(measure_name) if table else None

    def find_hierarchy(self, table_name: str, hierarchy_name: str) -> Hierarchy | None:
        table = self.tables.get(table_name)
        return table.find_hierarchy(hierarchy_name) if table else None

    def find_level(self, table_name: str, hierarchy_name: str, level_name: str) -> Level | None:
        hierarchy = self.find_hierarchy(table_name, hierarchy_name)
        return hierarchy.find_level(level_name) if hierarchy else None

    def relationships_for_table(self, table_name: str) -> list[Relationship]:
        return [r for r in self.relationships.values() if r.participates(table_name)]

    def find_filtering_relationships(self, table_name: str) -> list[Relationship]:
        """Active relationships through which ``table_name`` filters another table."""
        return [r for r in self.relationships.values() if r.filters_from(table_name)]

    def find_relationship_by_display_name(self, display_name: str) -> Relationship | None:
        for relationship in self.relationships.values():
            if relationship.display_name == display_name:
                return relationship
        return None

    def relationship_endpoints_exist(self, relationship: Relationship) -> bool:
        return (
            self.find_column(relationship.from_table, relationship.from_column) is not None
            and self.find_column(relationship.to_table, relationship.to_column) is not None
        )

    def translation_target_exists(self, translation: ObjectTranslation) -> bool:
        """Resolve the object a translation applies to by kind and names."""
        object_type = translation.object_type
        if object_type == ObjectType.MODEL:
            # A database has exactly one model and its name may differ between sides
            return True
        if object_type == ObjectType.TABLE:
            return translation.name in self.tables
        if object_type == ObjectType.PERSPECTIVE:
            return translation.name in self.perspectives
        if object_type == ObjectType.ROLE:
            return translation.name in self.roles
        if translation.table is None:
            return False
        if object_type == ObjectType.COLUMN:
            return self.find_column(translation.table, translation.name) is not None
        if object_type == ObjectType.MEASURE:
            return self.find_measure(translation.table, translation.name) is not None
        if object_type == ObjectType.HIERARCHY:
            return self.find_hierarchy(translation.table, translation.name) is not None
        if object_type == ObjectType.LEVEL:
            if translation.hierarchy is None:
                return False
            return (
                self.find_level(translation.table, translation.hierarchy, translation.name)
                is not None
            )
        return False

    def iter_measures(self) -> Iterator[tuple[str, Measure]]:
        for table in self.tables.values():
            for measure in table.measures:
                yield table.name, measure

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_connection(self, connection: DataSource) -> None:
        self._ensure_unique(self.connections, connection.name, "connection")
        self.connections[connection.name] = connection

    def remove_connection(self, name: str) -> DataSource | None:
        return self.connections.pop(name, None)

    def add_table(self, table: Table) -> None:
        self._ensure_unique(self.tables, table.name, "table")
        self.tables[table.name] = table

    def remove_table(self, name: str) -> list[Relationship]:
        """Remove a table and every relationship it participates in; return those relationships."""
        removed = self.relationships_for_table(name)
        for relationship in removed:
            del self.relationships[relationship.name]
        self.tables.pop(name, None)
        return removed

    def add_relationship(self, relationship: Relationship) -> Relationship:
        """
        Add a relationship, renaming it if its internal name is already taken.

        The previous name is kept in ``old_name`` and ``name_modified`` is set.
        """
        if relationship.name in self.relationships:
            old_name = relationship.name
            relationship.name = str(uuid.uuid4())
            relationship.old_name = old_name
            relationship.name_modified = True
            logger.debug(f"Relationship name '{old_name}' in use; renamed to '{relationship.name}'")
        self.relationships[relationship.name] = relationship
        return relationship

    def remove_relationship(self, name: str) -> Relationship | None:
        return self.relationships.pop(name, None)

    def add_perspective(self, perspective: Perspective) -> None:
        self._ensure_unique(self.perspectives, perspective.name, "perspective")
        self.perspectives[perspective.name] = perspective

    def remove_perspective(self, name: str) -> Perspective | None:
        return self.perspectives.pop(name, None)

    def add_culture(self, culture: Culture) -> None:
        self._ensure_unique(self.cultures, culture.name, "culture")
        self.cultures[culture.name] = culture

    def remove_culture(self, name: str) -> Culture | None:
        return self.cultures.pop(name, None)

    def add_role(self, role: Role) -> None:
        self._ensure_unique(self.roles, role.name, "role")
        self.roles[role.name] = role

    def remove_role(self, name: str) -> Role | None:
        return self.roles.pop(name, None)

    def normalize_role_members(self, policy: RoleMemberPolicy, server: str | None = None) -> None:
        """
        Rewrite external AzureAD role members for the target server flavour.

        AZURE_AS drops member identifiers; SSAS fills a missing identifier
        with the member name.
        AUTO is resolved against ``server`` first.
        """
        policy = policy.resolve(server)
        if policy == RoleMemberPolicy.NONE:
            return
        for role in self.roles.values():
            members: list[RoleMember] = []
            for member in role.members:
                if member.is_azure_ad and policy == RoleMemberPolicy.AZURE_AS and member.member_id is not None:
                    member = member.model_copy(update={"member_id": None})
                elif member.is_azure_ad and policy == RoleMemberPolicy.SSAS and not member.member_id:
                    member = member.model_copy(update={"member_id": member.member_name})
                members.append(member)
            role.members = members

    @staticmethod
    def _ensure_unique(collection: dict[str, Any], name: str, entity_type: str) -> None:
        if name in collection:
            raise SyncError(
                f"A {entity_type} named '{name}' already exists",
                entity_type=entity_type,
                entity_name=name,
            )

    def __repr__(self) -> str:
        return (
            f"ModelGraph(name={self.name!r}, tables={len(self.tables)}, "
            f"relationships={len(self.relationships)})"
        )


def load_bim(
    path: str | Path,
    role_member_policy: RoleMemberPolicy = RoleMemberPolicy.NONE,
    server: str | None = None,
) -> ModelGraph:
    """Read a tabular JSON model definition from disk."""
    model_path = Path(path)
    if not model_path.exists():
        raise FileNotFoundError(f"Model file not found: {path}")

    with model_path.open("r", encoding="utf-8-sig") as handle:
        data = json.load(handle)

    if not isinstance(data, dict):
        raise ValueError("Model JSON must parse to an object at root.")

    return ModelGraph.from_bim(data, role_member_policy=role_member_policy, server=server)
