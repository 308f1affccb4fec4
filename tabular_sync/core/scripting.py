"""
Create-or-replace scripting of a whole tabular database.

The target graph is always scripted as one command carrying the full
database definition; consumers may retarget the database name without
touching the rest of the payload.
"""

from __future__ import annotations


import json
from typing import Any

from tabular_sync.core.model_graph import ModelGraph
from tabular_sync.utils.exceptions import ValidationError
from tabular_sync.utils.logger import get_logger

logger = get_logger(__name__)

PROJECT_DATABASE_NAME = "SemanticModel"


def final_validation(graph: ModelGraph, direct_query: bool | None = None) -> None:
    """
    Check preconditions that must hold before anything is sent to a store.

    Raises:
        ValidationError: If a direct query model has more than one connection.
    """
    is_direct_query = graph.is_direct_query if direct_query is None else direct_query
    if is_direct_query and len(graph.connections) > 1:
        raise ValidationError(
            "Target model contains multiple connections, which are not allowed for "
            "Direct Query models. Re-run comparison and (considering changes) ensure "
            "there is a single connection in the target model.",
            field="connections",
            value=len(graph.connections),
        )


def build_create_or_replace(database: dict[str, Any]) -> dict[str, Any]:
    name = database.get("name", "")
    return {
        "createOrReplace": {
            "object": {"database": name},
            "database": database,
        }
    }


def script_database(
    graph: ModelGraph,
    database_name: str | None = None,
    direct_query: bool | None = None,
) -> str:
    """
    Script the graph as a single createOrReplace command.

    Args:
        graph: The synchronized target graph.
        database_name: If given, the database the script deploys to.
        direct_query: Overrides the graph's own storage mode for validation.

    Returns:
        The command as indented JSON.
    """
    final_validation(graph, direct_query)

    command = build_create_or_replace(graph.to_bim())
    script = json.dumps(command, indent=2)
    if database_name:
        script = retarget_script(script, database_name)

    logger.debug(f"Scripted database '{graph.name}' ({len(script)} characters)")
    return script


def retarget_script(script: str, database_name: str) -> str:
    """Point a createOrReplace script at another database name and id."""
    command = json.loads(script)
    create_or_replace = command.get("createOrReplace")
    if not isinstance(create_or_replace, dict):
        raise ValueError("Script is not a createOrReplace command")

    create_or_replace.setdefault("object", {})["database"] = database_name
    database = create_or_replace.setdefault("database", {})
    database["name"] = database_name
    database["id"] = database_name
    return json.dumps(command, indent=2)


def serialize_for_project(graph: ModelGraph) -> str:
    """Serialise the database for a project file, under the project's fixed name."""
    database = graph.to_bim()
    database["name"] = PROJECT_DATABASE_NAME
    database["id"] = PROJECT_DATABASE_NAME
    return json.dumps(database, indent=2)
