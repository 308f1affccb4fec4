"""
Backup and restore of objects that depend on tables.

Perspectives, cultures and roles reference tables and their children by
name. They are snapshotted before tables are recreated and rebuilt
afterwards against the new structure, so that references to objects
that disappeared are dropped rather than left dangling.
"""

from __future__ import annotations


import copy
from collections.abc import Mapping
from typing import TYPE_CHECKING, Iterable

from tabular_sync.core.model_graph import ModelGraph
from tabular_sync.core.models import Culture, Perspective, Role
from tabular_sync.utils.logger import get_logger

if TYPE_CHECKING:
    from tabular_sync.core.synchronizer import EntitySynchronizer

logger = get_logger(__name__)


class DependentObjectBackup:
    """
    Deep copies of a target graph's perspectives, cultures and roles.

    Restore must run in the order perspectives, cultures, roles:
    culture translations may refer to perspectives.
    """

    def __init__(self) -> None:
        self._perspectives: list[Perspective] | None = None
        self._cultures: list[Culture] | None = None
        self._roles: list[Role] | None = None

    @property
    def has_backup(self) -> bool:
        return self._perspectives is not None

    def take(self, graph: ModelGraph) -> None:
        """Snapshot the dependent objects currently on ``graph``."""
        self._perspectives = copy.deepcopy(list(graph.perspectives.values()))
        self._cultures = copy.deepcopy(list(graph.cultures.values()))
        self._roles = copy.deepcopy(list(graph.roles.values()))
        logger.debug(
            f"Backed up {len(self._perspectives)} perspectives, "
            f"{len(self._cultures)} cultures, {len(self._roles)} roles"
        )

    def find_perspective(self, name: str) -> Perspective | None:
        return _find(self._perspectives, name)

    def find_culture(self, name: str) -> Culture | None:
        return _find(self._cultures, name)

    def restore_perspectives(
        self,
        synchronizer: EntitySynchronizer,
        sources: Mapping[str, Perspective] | None = None,
        exclude: Iterable[str] = (),
    ) -> None:
        """
        Clear the live perspectives and recreate each backed-up one.

        Args:
            synchronizer: Synchronizer bound to the target graph.
            sources: Source-side definitions of perspectives that changed;
                these are reconciled through the merge/replace policy.
            exclude: Names whose deletion was requested; not recreated.
        """
        if self._perspectives is None:
            return
        graph = synchronizer.target
        graph.perspectives.clear()
        skipped = set(exclude)
        sources = sources or {}

        for backed_up in self._perspectives:
            if backed_up.name in skipped:
                continue
            restored = synchronizer.create_perspective(backed_up)
            if backed_up.name in sources:
                synchronizer.update_perspective(sources[backed_up.name], restored)
        logger.debug(f"Restored {len(graph.perspectives)} perspectives")

    def restore_cultures(
        self,
        synchronizer: EntitySynchronizer,
        sources: Mapping[str, Culture] | None = None,
        exclude: Iterable[str] = (),
    ) -> None:
        """Clear the live cultures and recreate each backed-up one."""
        if self._cultures is None:
            return
        graph = synchronizer.target
        graph.cultures.clear()
        skipped = set(exclude)
        sources = sources or {}

        for backed_up in self._cultures:
            if backed_up.name in skipped:
                continue
            restored = synchronizer.create_culture(backed_up)
            if backed_up.name in sources:
                synchronizer.update_culture(sources[backed_up.name], restored)
        logger.debug(f"Restored {len(graph.cultures)} cultures")

    def restore_roles(
        self,
        synchronizer: EntitySynchronizer,
        sources: Mapping[str, Role] | None = None,
        exclude: Iterable[str] = (),
    ) -> None:
        """Clear the live roles and recreate each backed-up one."""
        if self._roles is None:
            return
        graph = synchronizer.target
        graph.roles.clear()
        skipped = set(exclude)
        sources = sources or {}

        for backed_up in self._roles:
            if backed_up.name in skipped:
                continue
            restored = synchronizer.create_role(backed_up)
            if backed_up.name in sources:
                synchronizer.update_role(sources[backed_up.name], restored)
        logger.debug(f"Restored {len(graph.roles)} roles")

    def restore_all(
        self,
        synchronizer: EntitySynchronizer,
        perspective_sources: Mapping[str, Perspective] | None = None,
        culture_sources: Mapping[str, Culture] | None = None,
        role_sources: Mapping[str, Role] | None = None,
        exclude_perspectives: Iterable[str] = (),
        exclude_cultures: Iterable[str] = (),
        exclude_roles: Iterable[str] = (),
    ) -> None:
        self.restore_perspectives(synchronizer, perspective_sources, exclude_perspectives)
        self.restore_cultures(synchronizer, culture_sources, exclude_cultures)
        self.restore_roles(synchronizer, role_sources, exclude_roles)


def _find(items: list | None, name: str):
    if not items:
        return None
    for item in items:
        if item.name == name:
            return item
    return None
