"""
Formatting of change reports, models and validation messages.

Produces console text, JSON or Markdown for the CLI and for files.
"""

from __future__ import annotations


import json
from enum import Enum

from tabular_sync.core.change_detector import Change, ChangeReport, ChangeType, EntityType
from tabular_sync.core.events import Severity, ValidationMessage
from tabular_sync.core.model_graph import ModelGraph
from tabular_sync.utils.logger import get_logger

logger = get_logger(__name__)


class OutputFormat(str, Enum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"
    MARKDOWN = "markdown"


class ModelFormatter:
    """
    Formats models, change reports and validation messages.

    Args:
        output_format: table, json or markdown
        colorize: Whether to use ANSI colors in table output
        verbose: Whether to include property values of added/removed entities
    """

    def __init__(
        self,
        output_format: OutputFormat = OutputFormat.TABLE,
        colorize: bool = True,
        verbose: bool = False,
    ) -> None:
        self._format = output_format
        self._verbose = verbose

        self._colors = {
            "reset": "\033[0m" if colorize else "",
            "bold": "\033[1m" if colorize else "",
            "green": "\033[92m" if colorize else "",
            "red": "\033[91m" if colorize else "",
            "yellow": "\033[93m" if colorize else "",
            "cyan": "\033[96m" if colorize else "",
            "dim": "\033[2m" if colorize else "",
        }

    def format_changes(self, report: ChangeReport) -> str:
        if self._format == OutputFormat.JSON:
            return json.dumps(report.to_dict(), indent=2, default=str)
        if self._format == OutputFormat.MARKDOWN:
            return self._format_changes_markdown(report)
        return self._format_changes_table(report)

    def format_model(self, graph: ModelGraph) -> str:
        if self._format == OutputFormat.JSON:
            return json.dumps(graph.to_bim(), indent=2)
        if self._format == OutputFormat.MARKDOWN:
            return self._format_model_markdown(graph)
        return self._format_model_table(graph)

    def format_messages(self, messages: list[ValidationMessage]) -> str:
        if self._format == OutputFormat.JSON:
            return json.dumps(
                [
                    {
                        "scope": m.scope,
                        "message": m.message,
                        "kind": m.kind.value,
                        "severity": m.severity.value,
                    }
                    for m in messages
                ],
                indent=2,
            )
        if self._format == OutputFormat.MARKDOWN:
            return "\n".join(f"- **{m.severity.value}** ({m.kind.value}): {m.message}" for m in messages)

        c = self._colors
        color = {
            Severity.INFORMATIONAL: c["dim"],
            Severity.WARNING: c["yellow"],
            Severity.ERROR: c["red"],
        }
        return "\n".join(f"{color[m.severity]}{m}{c['reset']}" for m in messages)

    def format_diff(self, change: Change) -> str:
        """Format a single change as a diff view."""
        c = self._colors
        name = f"{change.parent_entity}.{change.entity_name}" if change.parent_entity else change.entity_name
        lines = [f"{c['bold']}{change.entity_type.value.upper()}: {name}{c['reset']}"]

        if change.change_type == ChangeType.ADDED:
            lines.append(f"  {c['green']}+ Added{c['reset']}")
            if change.new_value and self._verbose:
                for key, value in change.new_value.items():
                    lines.append(f"    {c['green']}+ {key}: {value}{c['reset']}")

        elif change.change_type == ChangeType.REMOVED:
            lines.append(f"  {c['red']}- Removed{c['reset']}")
            if change.old_value and self._verbose:
                for key, value in change.old_value.items():
                    lines.append(f"    {c['red']}- {key}: {value}{c['reset']}")

        elif change.change_type == ChangeType.MODIFIED:
            lines.append(f"  {c['yellow']}~ Modified{c['reset']}")
            for key, diff in change.details.items():
                lines.append(f"    {c['red']}- {key}: {diff['old']}{c['reset']}")
                lines.append(f"    {c['green']}+ {key}: {diff['new']}{c['reset']}")

        return "\n".join(lines)

    def _format_changes_table(self, report: ChangeReport) -> str:
        c = self._colors
        summary = report.summary()
        lines = [
            f"{c['bold']}Change Report{c['reset']}",
            f"Source: {report.source} -> Target: {report.target}",
            f"Generated: {report.generated_at.isoformat()}",
            "",
            f"{c['bold']}Summary{c['reset']}",
            "-" * 40,
            f"  {c['green']}Additions:{c['reset']}     {summary['added']}",
            f"  {c['yellow']}Modifications:{c['reset']} {summary['modified']}",
            f"  {c['red']}Removals:{c['reset']}      {summary['removed']}",
            f"  {c['bold']}Total:{c['reset']}         {summary['total']}",
            "",
        ]

        if not report.has_changes:
            lines.append(f"{c['green']}No changes detected. Models are in sync.{c['reset']}")
            return "\n".join(lines)

        lines.append(f"{c['bold']}Changes{c['reset']}")
        lines.append("-" * 60)
        for entity_type in EntityType:
            entity_changes = [
                change
                for change in report.of_type(entity_type)
                if change.change_type != ChangeType.UNCHANGED
            ]
            if entity_changes:
                lines.append(f"\n{c['cyan']}{entity_type.value.upper()}S{c['reset']}")
                for change in entity_changes:
                    lines.append(self.format_diff(change))
                    lines.append("")

        return "\n".join(lines)

    def _format_changes_markdown(self, report: ChangeReport) -> str:
        summary = report.summary()
        lines = [
            "# Change Report",
            "",
            f"- **Source**: {report.source}",
            f"- **Target**: {report.target}",
            f"- **Generated**: {report.generated_at.isoformat()}",
            "",
            "## Summary",
            "",
            f"- [+] Additions: **{summary['added']}**",
            f"- [~] Modifications: **{summary['modified']}**",
            f"- [-] Removals: **{summary['removed']}**",
            f"- **Total Changes: {summary['total']}**",
            "",
        ]

        if not report.has_changes:
            lines.append("> [OK] No changes detected. Models are in sync.")
            return "\n".join(lines)

        lines.append("## Detailed Changes")
        lines.append("")
        sections = (
            ("### Additions [+]", report.additions),
            ("### Modifications [~]", report.modifications),
            ("### Removals [-]", report.removals),
        )
        for title, changes in sections:
            if not changes:
                continue
            lines.append(title)
            lines.append("")
            for change in changes:
                prefix = f"{change.parent_entity}." if change.parent_entity else ""
                lines.append(f"- **{change.entity_type.value}**: `{prefix}{change.entity_name}`")
                for key, diff in change.details.items():
                    lines.append(f"  - {key}: `{diff.get('old')}` → `{diff.get('new')}`")
            lines.append("")

        return "\n".join(lines)

    def _format_model_table(self, graph: ModelGraph) -> str:
        c = self._colors
        lines = [f"{c['bold']}Tabular Model: {graph.name}{c['reset']}", ""]

        lines.append(f"{c['bold']}Tables ({len(graph.tables)}){c['reset']}")
        lines.append("-" * 60)
        for table in graph.tables.values():
            hidden = f" {c['dim']}[hidden]{c['reset']}" if table.is_hidden else ""
            lines.append(f"  {c['cyan']}{table.name}{c['reset']}{hidden}")
            for column in table.columns:
                lines.append(f"      {column.name}: {column.data_type}")
            for measure in table.measures:
                lines.append(f"      {c['yellow']}{measure.name}{c['reset']} (measure)")

        if graph.relationships:
            lines.append("")
            lines.append(f"{c['bold']}Relationships ({len(graph.relationships)}){c['reset']}")
            lines.append("-" * 60)
            for relationship in graph.relationships.values():
                active = "" if relationship.is_active else f" {c['dim']}[inactive]{c['reset']}"
                lines.append(f"  {relationship.display_name}{active}")

        return "\n".join(lines)

    def _format_model_markdown(self, graph: ModelGraph) -> str:
        lines = [f"# Tabular Model: {graph.name}", "", f"## Tables ({len(graph.tables)})", ""]
        for table in graph.tables.values():
            lines.append(f"### {table.name}")
            lines.append("")
            lines.append("| Column | Type |")
            lines.append("|--------|------|")
            for column in table.columns:
                lines.append(f"| {column.name} | {column.data_type} |")
            lines.append("")

        if graph.relationships:
            lines.append(f"## Relationships ({len(graph.relationships)})")
            lines.append("")
            lines.append("| Relationship | Active | Cross filter |")
            lines.append("|--------------|--------|--------------|")
            for relationship in graph.relationships.values():
                active = "Yes" if relationship.is_active else "No"
                lines.append(
                    f"| {relationship.display_name} | {active} | "
                    f"{relationship.cross_filtering_behavior.value} |"
                )
            lines.append("")

        return "\n".join(lines)

    def save_changes(self, report: ChangeReport, filepath: str) -> None:
        content = self.format_changes(report)
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(content)
        logger.info(f"Change report saved to {filepath}")
