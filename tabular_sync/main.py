"""
Tabular Sync CLI - command-line interface for tabular model synchronization.

Works on tabular model definition files (.bim): compare two models,
synchronize a target to a source and script the result, or check a
single model for ambiguous relationship paths.
"""

import sys
from pathlib import Path
from typing import Optional

import click

from tabular_sync import __version__
from tabular_sync.config import RoleMemberPolicy, get_settings, load_settings
from tabular_sync.core.formatter import ModelFormatter, OutputFormat
from tabular_sync.core.model_graph import load_bim
from tabular_sync.core.relationship_validator import RelationshipValidator
from tabular_sync.core.scripting import script_database, serialize_for_project
from tabular_sync.core.updater import ModelUpdater
from tabular_sync.utils.exceptions import TabularSyncError
from tabular_sync.utils.logger import get_logger, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="tabular-sync")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], verbose: bool, debug: bool) -> None:
    """
    Tabular Sync - synchronize tabular semantic model definitions.

    Examples:

        # Show what differs between two models
        tabular-sync compare source.bim target.bim

        # Synchronize target to source and write a deployment script
        tabular-sync script source.bim target.bim --output deploy.json

        # Check a model for ambiguous relationship paths
        tabular-sync validate model.bim
    """
    ctx.ensure_object(dict)

    try:
        settings = load_settings(config) if config else get_settings()
    except TabularSyncError as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    log_level = "DEBUG" if debug else ("INFO" if verbose else settings.log_level)
    setup_logging(level=log_level, json_output=settings.log_json)

    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("target", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json", "markdown"]),
    default="table",
    help="Output format",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Save change report to file",
)
@click.pass_context
def compare(
    ctx: click.Context,
    source: Path,
    target: Path,
    output_format: str,
    output: Optional[Path],
) -> None:
    """
    Compare two model definitions.

    Lists the connections, tables, relationships, measures, perspectives,
    cultures and roles that would be created, updated or deleted on TARGET.
    """
    logger = get_logger(__name__)

    try:
        source_graph = load_bim(source)
        target_graph = load_bim(target)

        report = ModelUpdater().compare(source_graph, target_graph)

        formatter = ModelFormatter(
            output_format=OutputFormat(output_format),
            colorize=output is None,
            verbose=ctx.obj.get("verbose", False),
        )
        if output:
            formatter.save_changes(report, str(output))
            click.echo(f"Report saved to: {output}")
        else:
            click.echo(formatter.format_changes(report))

        if not report.has_changes:
            click.echo("\n[OK] Models are in sync. No changes needed.")

    except (TabularSyncError, OSError, ValueError) as e:
        logger.error(f"Compare failed: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("target", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--database", "-d", help="Database name the script deploys to")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Write the script to a file instead of stdout",
)
@click.option(
    "--merge-perspectives/--replace-perspectives",
    default=None,
    help="Keep target-only perspective entries",
)
@click.option(
    "--merge-cultures/--replace-cultures",
    default=None,
    help="Keep target-only translations",
)
@click.option(
    "--role-members",
    help="AzureAD role member policy: auto, azure-as, ssas or none",
)
@click.option(
    "--project",
    is_flag=True,
    help="Write the synchronized model as a project file instead of a script",
)
@click.pass_context
def script(
    ctx: click.Context,
    source: Path,
    target: Path,
    database: Optional[str],
    output: Optional[Path],
    merge_perspectives: Optional[bool],
    merge_cultures: Optional[bool],
    role_members: Optional[str],
    project: bool,
) -> None:
    """
    Synchronize TARGET to SOURCE and emit a createOrReplace script.

    Validation messages are written to stderr.
    """
    logger = get_logger(__name__)
    settings = ctx.obj["settings"]

    options = settings.get_sync_options()
    if merge_perspectives is not None:
        options.merge_perspectives = merge_perspectives
    if merge_cultures is not None:
        options.merge_cultures = merge_cultures

    try:
        target_config = settings.get_target_config()
        policy = options.role_member_policy
        if role_members is not None:
            policy = RoleMemberPolicy.from_string(role_members)
        source_graph = load_bim(source, role_member_policy=policy, server=target_config.server)
        target_graph = load_bim(target, role_member_policy=policy, server=target_config.server)

        result = ModelUpdater(options=options).synchronize(source_graph, target_graph)

        for message in result.messages:
            click.echo(str(message), err=True)

        if not result.success:
            click.echo(f"[FAIL] Synchronization failed: {result.error_message}", err=True)
            sys.exit(1)

        if project:
            content = serialize_for_project(target_graph)
        else:
            content = script_database(
                target_graph,
                database_name=database or target_config.database or None,
                direct_query=target_graph.is_direct_query or target_config.direct_query,
            )

        if output:
            output.write_text(content, encoding="utf-8")
            click.echo(
                f"[OK] {result.changes_applied} changes applied; written to {output}", err=True
            )
        else:
            click.echo(content)

    except (TabularSyncError, OSError, ValueError) as e:
        logger.error(f"Script failed: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("model", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json", "markdown"]),
    default="table",
    help="Output format",
)
@click.pass_context
def validate(ctx: click.Context, model: Path, output_format: str) -> None:
    """
    Check a model for ambiguous relationship paths.

    Reports the relationships that would have to be made inactive.
    Exits with status 1 if any were found.
    """
    logger = get_logger(__name__)

    try:
        graph = load_bim(model)
        messages = RelationshipValidator(graph).validate()

        if messages:
            formatter = ModelFormatter(output_format=OutputFormat(output_format))
            click.echo(formatter.format_messages(messages))
            sys.exit(1)

        click.echo("[OK] No ambiguous relationship paths found.")

    except (TabularSyncError, OSError, ValueError) as e:
        logger.error(f"Validation failed: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Show current configuration."""
    settings = ctx.obj["settings"]

    click.echo("Current Configuration")
    click.echo("=" * 40)

    target = settings.get_target_config()
    click.echo("\n[Target]")
    click.echo(f"  Server:        {target.server or '(not set)'}")
    click.echo(f"  Database:      {target.database or '(not set)'}")
    click.echo(f"  Direct query:  {target.direct_query}")

    options = settings.get_sync_options()
    click.echo("\n[Sync]")
    click.echo(f"  Merge perspectives: {options.merge_perspectives}")
    click.echo(f"  Merge cultures:     {options.merge_cultures}")
    click.echo(f"  Processing:         {options.processing_option.value}")
    click.echo(f"  Transaction:        {options.transaction}")
    click.echo(f"  Role members:       {options.role_member_policy.value}")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
