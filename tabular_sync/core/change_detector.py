"""
Change detector for tabular model synchronization.

Compares a source and a target ModelGraph and lists, per entity, what
has to be created, updated or deleted on the target.
"""

from __future__ import annotations


from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from tabular_sync.core.model_graph import ModelGraph
from tabular_sync.core.models import BimObject, Table
from tabular_sync.utils.logger import get_logger

logger = get_logger(__name__)


class ChangeType(str, Enum):
    """Types of changes detected between models."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    UNCHANGED = "unchanged"


class EntityType(str, Enum):
    """Entity kinds compared, in the order the synchronizer applies them."""

    CONNECTION = "connection"
    TABLE = "table"
    RELATIONSHIP = "relationship"
    MEASURE = "measure"
    PERSPECTIVE = "perspective"
    CULTURE = "culture"
    ROLE = "role"


@dataclass
class Change:
    """Represents a single change between source and target models."""

    change_type: ChangeType
    entity_type: EntityType
    entity_name: str
    old_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    parent_entity: str | None = None  # owning table of a measure
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Human-readable string representation."""
        if self.parent_entity:
            return (
                f"{self.change_type.value.upper()}: {self.entity_type.value} "
                f"'{self.parent_entity}.{self.entity_name}'"
            )
        return f"{self.change_type.value.upper()}: {self.entity_type.value} '{self.entity_name}'"

    def to_dict(self) -> dict[str, Any]:
        """Convert change to dictionary for serialization."""
        return {
            "change_type": self.change_type.value,
            "entity_type": self.entity_type.value,
            "entity_name": self.entity_name,
            "parent_entity": self.parent_entity,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "details": self.details,
        }


@dataclass
class ChangeReport:
    """Summary report of all detected changes."""

    source: str
    target: str
    changes: list[Change]
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def additions(self) -> list[Change]:
        return [c for c in self.changes if c.change_type == ChangeType.ADDED]

    @property
    def modifications(self) -> list[Change]:
        return [c for c in self.changes if c.change_type == ChangeType.MODIFIED]

    @property
    def removals(self) -> list[Change]:
        return [c for c in self.changes if c.change_type == ChangeType.REMOVED]

    @property
    def has_changes(self) -> bool:
        return any(c.change_type != ChangeType.UNCHANGED for c in self.changes)

    @property
    def has_structural_changes(self) -> bool:
        """True if tables, relationships or connections change."""
        structural = {EntityType.CONNECTION, EntityType.TABLE, EntityType.RELATIONSHIP}
        return any(
            c.entity_type in structural and c.change_type != ChangeType.UNCHANGED
            for c in self.changes
        )

    def of_type(
        self, entity_type: EntityType, change_type: ChangeType | None = None
    ) -> list[Change]:
        return [
            c
            for c in self.changes
            if c.entity_type == entity_type
            and (change_type is None or c.change_type == change_type)
        ]

    def summary(self) -> dict[str, int]:
        """Get summary counts of changes."""
        return {
            "added": len(self.additions),
            "modified": len(self.modifications),
            "removed": len(self.removals),
            "total": len(self.additions) + len(self.modifications) + len(self.removals),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary for serialization."""
        return {
            "source": self.source,
            "target": self.target,
            "generated_at": self.generated_at.isoformat(),
            "summary": self.summary(),
            "changes": [c.to_dict() for c in self.changes],
        }


def _table_definition(table: Table) -> dict[str, Any]:
    # Measures are compared on their own
    definition = table.to_bim()
    definition.pop("measures", None)
    return definition


def _relationship_key(relationship) -> str:
    return relationship.display_name


class ChangeDetector:
    """
    Detects changes between source and target tabular models.

    Entities are matched by name; relationships by their endpoints, since
    internal relationship names differ freely between models. Tables
    are compared without their measures, which are reported separately.
    """

    def __init__(self, include_unchanged: bool = False) -> None:
        """
        Initialize the change detector.

        Args:
            include_unchanged: If True, also report entities that are equal
        """
        self._include_unchanged = include_unchanged

    def detect_changes(self, source: ModelGraph, target: ModelGraph) -> ChangeReport:
        """
        Detect all changes between source and target models.

        Args:
            source: The source model (authoritative)
            target: The target model (to be updated)

        Returns:
            ChangeReport containing all detected changes
        """
        logger.info(
            f"Detecting changes between '{source.name}' (source) "
            f"and '{target.name}' (target)"
        )

        changes: list[Change] = []
        changes.extend(
            self._compare_collection(
                EntityType.CONNECTION, source.connections, target.connections
            )
        )
        changes.extend(
            self._compare_collection(
                EntityType.TABLE, source.tables, target.tables, dump=_table_definition
            )
        )
        changes.extend(
            self._compare_collection(
                EntityType.RELATIONSHIP,
                {_relationship_key(r): r for r in source.relationships.values()},
                {_relationship_key(r): r for r in target.relationships.values()},
            )
        )
        changes.extend(self._detect_measure_changes(source, target))
        changes.extend(
            self._compare_collection(
                EntityType.PERSPECTIVE, source.perspectives, target.perspectives
            )
        )
        changes.extend(
            self._compare_collection(EntityType.CULTURE, source.cultures, target.cultures)
        )
        changes.extend(self._compare_collection(EntityType.ROLE, source.roles, target.roles))

        report = ChangeReport(source=source.name, target=target.name, changes=changes)

        summary = report.summary()
        logger.info(
            f"Change detection complete: {summary['added']} additions, "
            f"{summary['modified']} modifications, {summary['removed']} removals"
        )
        return report

    def _compare_collection(
        self,
        entity_type: EntityType,
        source_items: dict[str, BimObject],
        target_items: dict[str, BimObject],
        dump: Callable[[Any], dict[str, Any]] | None = None,
        parent_entity: str | None = None,
    ) -> list[Change]:
        dump = dump or (lambda item: item.to_bim())
        changes: list[Change] = []

        for key, item in source_items.items():
            new_value = dump(item)
            if key not in target_items:
                changes.append(
                    Change(
                        change_type=ChangeType.ADDED,
                        entity_type=entity_type,
                        entity_name=key,
                        parent_entity=parent_entity,
                        new_value=new_value,
                    )
                )
                continue

            old_value = dump(target_items[key])
            details = _diff(old_value, new_value, ignore=("name",) if entity_type == EntityType.RELATIONSHIP else ())
            if details:
                changes.append(
                    Change(
                        change_type=ChangeType.MODIFIED,
                        entity_type=entity_type,
                        entity_name=key,
                        parent_entity=parent_entity,
                        old_value=old_value,
                        new_value=new_value,
                        details=details,
                    )
                )
            elif self._include_unchanged:
                changes.append(
                    Change(
                        change_type=ChangeType.UNCHANGED,
                        entity_type=entity_type,
                        entity_name=key,
                        parent_entity=parent_entity,
                    )
                )

        for key, item in target_items.items():
            if key not in source_items:
                changes.append(
                    Change(
                        change_type=ChangeType.REMOVED,
                        entity_type=entity_type,
                        entity_name=key,
                        parent_entity=parent_entity,
                        old_value=dump(item),
                    )
                )

        return changes

    def _detect_measure_changes(self, source: ModelGraph, target: ModelGraph) -> list[Change]:
        """Compare measures of tables present on both sides."""
        changes: list[Change] = []
        for table_name, source_table in source.tables.items():
            target_table = target.get_table(table_name)
            if target_table is None:
                # Measures of new tables are added with the table
                for measure in source_table.measures:
                    changes.append(
                        Change(
                            change_type=ChangeType.ADDED,
                            entity_type=EntityType.MEASURE,
                            entity_name=measure.name,
                            parent_entity=table_name,
                            new_value=measure.to_bim(),
                        )
                    )
                continue
            changes.extend(
                self._compare_collection(
                    EntityType.MEASURE,
                    {m.name: m for m in source_table.measures},
                    {m.name: m for m in target_table.measures},
                    parent_entity=table_name,
                )
            )
        return changes


def _diff(
    old_value: dict[str, Any], new_value: dict[str, Any], ignore: Iterable[str] = ()
) -> dict[str, Any]:
    """Top-level properties whose values differ, as ``{key: {"old", "new"}}``."""
    skipped = set(ignore)
    details: dict[str, Any] = {}
    for key in sorted(set(old_value) | set(new_value)):
        if key in skipped:
            continue
        if old_value.get(key) != new_value.get(key):
            details[key] = {"old": old_value.get(key), "new": new_value.get(key)}
    return details
