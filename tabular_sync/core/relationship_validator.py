"""
Relationship ambiguity validation.

A model must not offer two active filter paths from one table to
another. Starting from every table in turn, the validator follows
active filtering relationships outwards, remembering which tables were
reached and through which path; when a table is reached a second time
one of the two relationships is deactivated.
"""

from __future__ import annotations


from collections import OrderedDict
from dataclasses import dataclass

from tabular_sync.core.events import (
    MessageKind,
    Severity,
    ValidationCallback,
    ValidationMessage,
    ignore_message,
)
from tabular_sync.core.model_graph import ModelGraph
from tabular_sync.core.models import Relationship
from tabular_sync.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RelationshipLink:
    """One step of a filter path, from ``begin_table`` to ``end_table``."""

    begin_table: str
    end_table: str
    is_root: bool
    table_path: str
    filtering_relationship: Relationship

    @classmethod
    def extend(
        cls,
        begin_table: str,
        end_table: str,
        relationship: Relationship,
        parent_path: str = "",
    ) -> "RelationshipLink":
        is_root = not parent_path
        prefix = f"'{begin_table}'" if is_root else parent_path
        return cls(
            begin_table=begin_table,
            end_table=end_table,
            is_root=is_root,
            table_path=f"{prefix}->'{end_table}'",
            filtering_relationship=relationship,
        )

    def has_visited(self, table_name: str) -> bool:
        return f"'{table_name}'" in self.table_path


class RelationshipChain:
    """Links reached from one root table, keyed by end table name."""

    def __init__(self) -> None:
        self._links: OrderedDict[str, RelationshipLink] = OrderedDict()

    def __len__(self) -> int:
        return len(self._links)

    def add(self, link: RelationshipLink) -> None:
        self._links[link.end_table] = link

    def contains_end_table(self, name: str) -> bool:
        return name in self._links

    def find_by_end_table(self, name: str) -> RelationshipLink | None:
        return self._links.get(name)

    def remove_by_end_table(self, name: str) -> None:
        self._links.pop(name, None)

    def find_root(self) -> RelationshipLink | None:
        for link in self._links.values():
            if link.is_root:
                return link
        return next(iter(self._links.values()), None)


class RelationshipValidator:
    """
    Deactivates relationships that create ambiguous filter paths.

    When two paths reach the same table, the relationship that already
    existed in the target wins and the one copied from the source is
    deactivated. Each resolution, and each relationship whose internal
    name had to be changed on creation, is reported as a warning.

    Args:
        graph: The graph to validate; relationships are modified in place.
        on_message: Receives every validation message.
    """

    def __init__(self, graph: ModelGraph, on_message: ValidationCallback = ignore_message) -> None:
        self._graph = graph
        self._on_message = on_message
        self._messages: list[ValidationMessage] = []

    def validate(self) -> list[ValidationMessage]:
        """Run the validation and return the messages it produced."""
        self._messages = []

        for begin_table in list(self._graph.tables):
            chain = RelationshipChain()
            for relationship in self._graph.find_filtering_relationships(begin_table):
                end_table = relationship.other_end(begin_table)
                self._validate_link(RelationshipLink.extend(begin_table, end_table, relationship), chain)

        for relationship in self._graph.relationships.values():
            if relationship.name_modified:
                self._emit(
                    relationship.display_name,
                    f"Relationship {relationship.display_name} has been created/updated, but its "
                    f"Name property was changed from \"{relationship.old_name}\" to "
                    f"\"{relationship.name}\" to avoid conflict with an existing relationship.",
                )
                relationship.name_modified = False

        if self._messages:
            logger.warning(f"Relationship validation produced {len(self._messages)} warnings")
        return list(self._messages)

    def _validate_link(self, link: RelationshipLink, chain: RelationshipChain) -> None:
        other_link = chain.find_by_end_table(link.end_table)
        if other_link is not None:
            root = chain.find_root()
            root_table = root.begin_table if root else link.begin_table

            if link.filtering_relationship.copied_from_source:
                self._deactivate(link, other_link, root_table)
            else:
                self._deactivate(other_link, link, root_table)
                chain.remove_by_end_table(other_link.end_table)

        if not link.filtering_relationship.is_active:
            return

        chain.add(link)
        begin_table = link.end_table
        for relationship in self._graph.find_filtering_relationships(begin_table):
            end_table = relationship.other_end(begin_table)
            if link.has_visited(end_table):
                continue
            self._validate_link(
                RelationshipLink.extend(begin_table, end_table, relationship, link.table_path),
                chain,
            )

    def _deactivate(self, loser: RelationshipLink, winner: RelationshipLink, root_table: str) -> None:
        relationship = loser.filtering_relationship
        relationship.is_active = False
        logger.debug(f"Deactivated relationship {relationship.display_name}")
        self._emit(
            relationship.display_name,
            f"Relationship {relationship.display_name} (which is active in the source) has been "
            f"created/updated, but is set to inactive in the target because it introduces "
            f"ambiguous paths between '{root_table}' and '{loser.end_table}': "
            f"'{loser.table_path} and {winner.table_path}'.",
        )

    def _emit(self, scope: str, text: str) -> None:
        message = ValidationMessage(
            scope=scope,
            message=text,
            kind=MessageKind.RELATIONSHIP,
            severity=Severity.WARNING,
        )
        self._messages.append(message)
        self._on_message(message)


def validate_relationships(
    graph: ModelGraph, on_message: ValidationCallback = ignore_message
) -> list[ValidationMessage]:
    return RelationshipValidator(graph, on_message).validate()
