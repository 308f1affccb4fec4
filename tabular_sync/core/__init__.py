"""Core modules for tabular-sync."""

from __future__ import annotations


from tabular_sync.core.model_graph import ModelGraph, load_bim
from tabular_sync.core.change_detector import ChangeDetector, ChangeReport, ChangeType, Change, EntityType
from tabular_sync.core.synchronizer import EntitySynchronizer, TableUpdate
from tabular_sync.core.backup import DependentObjectBackup
from tabular_sync.core.relationship_validator import RelationshipValidator, validate_relationships
from tabular_sync.core.scripting import script_database, retarget_script, serialize_for_project
from tabular_sync.core.store import MetadataStore, RefreshType
from tabular_sync.core.deployment import DeploymentOrchestrator, DeploymentState
from tabular_sync.core.updater import ModelUpdater, SyncResult
from tabular_sync.core.formatter import ModelFormatter, OutputFormat

__all__ = [
    "ModelGraph",
    "load_bim",
    "ChangeDetector",
    "ChangeReport",
    "ChangeType",
    "Change",
    "EntityType",
    "EntitySynchronizer",
    "TableUpdate",
    "DependentObjectBackup",
    "RelationshipValidator",
    "validate_relationships",
    "script_database",
    "retarget_script",
    "serialize_for_project",
    "MetadataStore",
    "RefreshType",
    "DeploymentOrchestrator",
    "DeploymentState",
    "ModelUpdater",
    "SyncResult",
    "ModelFormatter",
    "OutputFormat",
]
