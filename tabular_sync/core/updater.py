"""
Tabular model updater.

Runs one synchronization pass: detect changes, back up dependent
objects, synchronize connections, tables, relationships and measures,
restore perspectives, cultures and roles, then validate relationships.
"""

from __future__ import annotations


from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from tabular_sync.config.settings import SyncOptions
from tabular_sync.core.backup import DependentObjectBackup
from tabular_sync.core.change_detector import (
    Change,
    ChangeDetector,
    ChangeReport,
    ChangeType,
    EntityType,
)
from tabular_sync.core.events import (
    MessageKind,
    Severity,
    ValidationCallback,
    ValidationMessage,
    ignore_message,
)
from tabular_sync.core.model_graph import ModelGraph
from tabular_sync.core.relationship_validator import RelationshipValidator
from tabular_sync.core.synchronizer import EntitySynchronizer
from tabular_sync.utils.exceptions import SyncError
from tabular_sync.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SyncResult:
    """Result of a synchronization pass."""

    success: bool
    changes_applied: int
    changes_skipped: int
    started_at: datetime
    completed_at: datetime | None = None
    source_model: str = ""
    target_model: str = ""
    tables_to_process: list[str] = field(default_factory=list)
    has_structural_changes: bool = False
    messages: list[ValidationMessage] = field(default_factory=list)
    error_message: str | None = None

    @property
    def duration_seconds(self) -> float:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "changes_applied": self.changes_applied,
            "changes_skipped": self.changes_skipped,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "source_model": self.source_model,
            "target_model": self.target_model,
            "tables_to_process": self.tables_to_process,
            "has_structural_changes": self.has_structural_changes,
            "messages": [str(m) for m in self.messages],
            "error_message": self.error_message,
        }


class ModelUpdater:
    """
    Brings a target ModelGraph in line with a source ModelGraph.

    The target is modified in place; script or deploy it afterwards.
    """

    def __init__(
        self,
        options: SyncOptions | None = None,
        change_detector: ChangeDetector | None = None,
        on_message: ValidationCallback = ignore_message,
    ) -> None:
        """
        Initialize the updater.

        Args:
            options: Merge policies and processing options
            change_detector: Optional custom change detector
            on_message: Receives validation messages as they are produced
        """
        self._options = options or SyncOptions()
        self._change_detector = change_detector or ChangeDetector()
        self._on_message = on_message

    def compare(self, source: ModelGraph, target: ModelGraph) -> ChangeReport:
        return self._change_detector.detect_changes(source, target)

    def synchronize(
        self,
        source: ModelGraph,
        target: ModelGraph,
        report: ChangeReport | None = None,
    ) -> SyncResult:
        """
        Apply every change in ``report`` (detected if not given) to ``target``.

        Returns:
            SyncResult; on failure ``success`` is False and ``error_message``
            says why. The target may then be partially synchronized.
        """
        started_at = datetime.now(timezone.utc)
        report = report or self.compare(source, target)
        result = SyncResult(
            success=False,
            changes_applied=0,
            changes_skipped=0,
            started_at=started_at,
            source_model=source.name,
            target_model=target.name,
            has_structural_changes=report.has_structural_changes,
        )
        logger.info(f"Synchronizing '{target.name}' from '{source.name}'")

        try:
            self._apply(source, target, report, result)
            result.messages.extend(
                RelationshipValidator(target, self._on_message).validate()
            )
            result.success = True
        except SyncError as e:
            logger.error(f"Synchronization failed: {e}")
            result.error_message = str(e)

        result.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"Synchronization finished: {result.changes_applied} applied, "
            f"{result.changes_skipped} skipped"
        )
        return result

    def _apply(
        self,
        source: ModelGraph,
        target: ModelGraph,
        report: ChangeReport,
        result: SyncResult,
    ) -> None:
        backup = DependentObjectBackup()
        backup.take(target)
        synchronizer = EntitySynchronizer(target, self._options, backup)

        def changes(entity_type: EntityType, change_type: ChangeType) -> list[Change]:
            return report.of_type(entity_type, change_type)

        # Connections
        for change in changes(EntityType.CONNECTION, ChangeType.REMOVED):
            synchronizer.delete_connection(change.entity_name)
            result.changes_applied += 1
        for change in changes(EntityType.CONNECTION, ChangeType.ADDED):
            synchronizer.create_connection(source.connections[change.entity_name])
            result.changes_applied += 1
        for change in changes(EntityType.CONNECTION, ChangeType.MODIFIED):
            synchronizer.update_connection(
                source.connections[change.entity_name], target.connections[change.entity_name]
            )
            result.changes_applied += 1

        # Tables
        for change in changes(EntityType.TABLE, ChangeType.REMOVED):
            synchronizer.delete_table(change.entity_name)
            result.changes_applied += 1
        for change in changes(EntityType.TABLE, ChangeType.ADDED):
            synchronizer.create_table(source.tables[change.entity_name])
            result.tables_to_process.append(change.entity_name)
            result.changes_applied += 1
        for change in changes(EntityType.TABLE, ChangeType.MODIFIED):
            update = synchronizer.update_table(
                source.tables[change.entity_name], target.tables[change.entity_name]
            )
            for relationship in update.dropped_relationships:
                self._emit(
                    result,
                    relationship.display_name,
                    f"Relationship {relationship.display_name} was removed because table "
                    f"'{change.entity_name}' no longer has a column it refers to.",
                    MessageKind.TABLE,
                )
            result.tables_to_process.append(change.entity_name)
            result.changes_applied += 1

        # Relationships, matched by endpoints
        for change in changes(EntityType.RELATIONSHIP, ChangeType.REMOVED):
            existing = target.find_relationship_by_display_name(change.entity_name)
            if existing is None:
                # Already removed with one of its tables
                result.changes_skipped += 1
                continue
            synchronizer.delete_relationship(existing.name)
            result.changes_applied += 1
        for change in changes(EntityType.RELATIONSHIP, ChangeType.ADDED):
            relationship_source = source.find_relationship_by_display_name(change.entity_name)
            synchronizer.create_relationship(relationship_source)
            result.changes_applied += 1
        for change in changes(EntityType.RELATIONSHIP, ChangeType.MODIFIED):
            relationship_source = source.find_relationship_by_display_name(change.entity_name)
            existing = target.find_relationship_by_display_name(change.entity_name)
            if existing is None:
                synchronizer.create_relationship(relationship_source)
            else:
                synchronizer.update_relationship(relationship_source, existing)
            result.changes_applied += 1

        # Measures
        for change in changes(EntityType.MEASURE, ChangeType.REMOVED):
            synchronizer.delete_measure(change.parent_entity, change.entity_name)
            result.changes_applied += 1
        for change in changes(EntityType.MEASURE, ChangeType.ADDED):
            measure = source.find_measure(change.parent_entity, change.entity_name)
            synchronizer.create_measure(change.parent_entity, measure)
            result.changes_applied += 1
        for change in changes(EntityType.MEASURE, ChangeType.MODIFIED):
            measure = source.find_measure(change.parent_entity, change.entity_name)
            synchronizer.update_measure(change.parent_entity, measure)
            result.changes_applied += 1

        # Perspectives, cultures and roles: restore, then add the new ones
        def modified(entity_type: EntityType, collection: dict) -> dict:
            return {
                c.entity_name: collection[c.entity_name]
                for c in changes(entity_type, ChangeType.MODIFIED)
            }

        def removed(entity_type: EntityType) -> list[str]:
            return [c.entity_name for c in changes(entity_type, ChangeType.REMOVED)]

        backup.restore_all(
            synchronizer,
            perspective_sources=modified(EntityType.PERSPECTIVE, source.perspectives),
            culture_sources=modified(EntityType.CULTURE, source.cultures),
            role_sources=modified(EntityType.ROLE, source.roles),
            exclude_perspectives=removed(EntityType.PERSPECTIVE),
            exclude_cultures=removed(EntityType.CULTURE),
            exclude_roles=removed(EntityType.ROLE),
        )
        for entity_type in (EntityType.PERSPECTIVE, EntityType.CULTURE, EntityType.ROLE):
            result.changes_applied += len(changes(entity_type, ChangeType.MODIFIED))
            result.changes_applied += len(changes(entity_type, ChangeType.REMOVED))

        for change in changes(EntityType.PERSPECTIVE, ChangeType.ADDED):
            synchronizer.create_perspective(source.perspectives[change.entity_name])
            result.changes_applied += 1
        for change in changes(EntityType.CULTURE, ChangeType.ADDED):
            synchronizer.create_culture(source.cultures[change.entity_name])
            result.changes_applied += 1
        for change in changes(EntityType.ROLE, ChangeType.ADDED):
            synchronizer.create_role(source.roles[change.entity_name])
            result.changes_applied += 1

        synchronizer.roles_cleanup()

    def _emit(self, result: SyncResult, scope: str, text: str, kind: MessageKind) -> None:
        message = ValidationMessage(scope=scope, message=text, kind=kind, severity=Severity.WARNING)
        result.messages.append(message)
        self._on_message(message)
