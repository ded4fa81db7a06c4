"""
Command-line interface for paramdb.
"""

import asyncio
import logging
import sys
import time
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import (
    DatabaseConfig,
    DatabaseConnection,
    LoggingConfig,
    ParamDBConfig,
    ReconcileConfig,
)
from .exceptions import ConfigurationError, ParamDBError
from .schema.operations import SchemaOperations


console = Console()

# Exit code of a run that finished but collected statement errors
EXIT_PARTIAL = 2


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ParamDBError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


def configure_logging(config: LoggingConfig, debug: bool = False) -> None:
    """Install console and optional rotating file handlers on the root logger."""
    level = logging.DEBUG if debug else getattr(logging, config.level)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console_handler = RichHandler(console=Console(stderr=True), show_path=False)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console_handler)

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(config.format))
        root.addHandler(file_handler)


def _load_config(ctx: click.Context, path: str) -> ParamDBConfig:
    paramdb_config = ParamDBConfig.from_yaml(path)
    debug = bool(ctx.obj and ctx.obj.get("debug")) or paramdb_config.debug
    configure_logging(paramdb_config.logging, debug)
    return paramdb_config


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """paramdb: create and repair parameter databases."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="paramdb-config.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new paramdb configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    _create_default_config().to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the configuration file with your database details")
    console.print("2. Run: paramdb validate-config --config your-config.yaml")
    console.print("3. Run: paramdb create --config your-config.yaml")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        paramdb_config = ParamDBConfig.from_yaml(config)
        paramdb_config.validate_config()

        console.print("[green]✓[/green] Configuration is valid")
        _display_config_summary(paramdb_config)

    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {escape(str(e))}")
        sys.exit(1)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--database",
    "-d",
    help="Database configuration name (needed when several are configured)",
)
@click.option(
    "--overwrite",
    type=click.Choice(["none", "drop", "empty"], case_sensitive=False),
    help="Policy for existing tables that are not kept",
)
@click.option(
    "--keep-table",
    "keep_tables",
    multiple=True,
    help="Table to leave untouched (repeatable)",
)
@click.option(
    "--target-version",
    type=int,
    help="Schema version to reach (default: latest)",
)
@click.option(
    "--schema-file",
    type=click.Path(exists=True, dir_okay=False),
    help="Schema script to apply instead of the packaged base schema",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without making changes",
)
@click.pass_context
@handle_errors
def create(
    ctx,
    config: str,
    database: Optional[str],
    overwrite: Optional[str],
    keep_tables: Tuple[str, ...],
    target_version: Optional[int],
    schema_file: Optional[str],
    dry_run: bool,
):
    """Create or repair a parameter database."""
    paramdb_config = _load_config(ctx, config)

    updates = {}
    if overwrite is not None:
        updates["overwrite"] = overwrite
    if keep_tables:
        updates["keep_tables"] = list(keep_tables)
    if target_version is not None:
        updates["target_version"] = target_version
    if schema_file is not None:
        updates["schema_file"] = schema_file
    if dry_run:
        updates["dry_run"] = True
    options = ReconcileConfig(**{**paramdb_config.reconcile.model_dump(), **updates})

    if options.dry_run:
        console.print("[yellow]Dry run mode - no changes will be made[/yellow]")

    # Import here to avoid circular imports
    from .creator import DatabaseCreator

    result = asyncio.run(DatabaseCreator(paramdb_config).create(database, options))
    _display_creation_result(result)

    if result.errors:
        sys.exit(EXIT_PARTIAL)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--database",
    "-d",
    help="Database configuration name",
)
@click.pass_context
@handle_errors
def tables(ctx, config: str, database: Optional[str]):
    """List the tables of a parameter database."""
    paramdb_config = _load_config(ctx, config)
    db_config = paramdb_config.get_database(database)

    async def run_inventory():
        from .database.connection import open_pool
        from .database.introspection import SchemaIntrospector

        connection = db_config.connection
        async with open_pool(connection.to_connection_config()) as pool:
            introspector = SchemaIntrospector(pool, connection.schema_name)
            names = await introspector.list_tables()
            return [(name, await introspector.count_rows(name)) for name in names]

    inventory = asyncio.run(run_inventory())

    table = Table(title=f"Tables in {db_config.name}")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", style="green", justify="right")
    for name, rows in inventory:
        table.add_row(name, str(rows))
    console.print(table)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--database",
    "-d",
    help="Database configuration name",
)
@click.option(
    "--limit",
    type=int,
    default=20,
    show_default=True,
    help="Number of ledger records to show",
)
@click.pass_context
@handle_errors
def history(ctx, config: str, database: Optional[str], limit: int):
    """Show the ledger of a parameter database."""
    paramdb_config = _load_config(ctx, config)
    db_config = paramdb_config.get_database(database)
    bookkeeping = paramdb_config.bookkeeping

    async def run_history():
        from .database.connection import open_pool
        from .schema.metadata import MetadataLedger
        from .schema.operations import SchemaOperations

        connection = db_config.connection
        async with open_pool(connection.to_connection_config()) as pool:
            ledger = MetadataLedger(
                pool,
                SchemaOperations(pool),
                ledger_table=bookkeeping.ledger_table,
                version_table=bookkeeping.version_table,
                schema=connection.schema_name,
            )
            return await ledger.current_version(), await ledger.history(limit)

    version, records = asyncio.run(run_history())

    console.print(f"Schema version: [bold]{version if version is not None else 'unknown'}[/bold]")
    if not records:
        console.print("[yellow]No ledger records[/yellow]")
        return

    table = Table(title=f"Ledger of {db_config.name}")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Date", style="magenta")
    table.add_column("User", style="green")
    table.add_column("Tables")
    table.add_column("Remarks", style="yellow")
    for record in records:
        table.add_row(
            str(record.sequence_id),
            str(record.timestamp),
            record.actor,
            record.affected_tables,
            record.remarks or "",
        )
    console.print(table)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def test_connection(config: str):
    """Test database connections."""
    console.print("[blue]Testing connections...[/blue]")

    paramdb_config = ParamDBConfig.from_yaml(config)

    async def run_connection_tests():
        from .database.connection import open_pool
        from .schema.dialect import resolve_engine_family

        total_passed = 0
        total_failed = 0

        for db_config in paramdb_config.databases:
            console.print(f"\nTesting database: [yellow]{db_config.name}[/yellow]")
            connection = db_config.connection

            try:
                start_time = time.time()
                async with open_pool(connection.to_connection_config()) as pool:
                    banner = await pool.server_version()

                response_time = (time.time() - start_time) * 1000
                family = resolve_engine_family(banner, connection.engine)
                console.print(f"  [green]Connected successfully[/green] ({response_time:.1f}ms)")
                console.print(f"     Engine: {family.value}")
                console.print(f"     Server version: {(banner or '').split(',')[0]}")
                total_passed += 1

            except ParamDBError as e:
                console.print(f"  [red]Connection failed: {escape(str(e))}[/red]")
                total_failed += 1

        console.print("\n[bold]Connection Test Summary[/bold]")
        console.print(f"  Passed: [green]{total_passed}[/green]")
        console.print(f"  Failed: [red]{total_failed}[/red]")
        return 0 if total_failed == 0 else 1

    sys.exit(asyncio.run(run_connection_tests()))


def _create_default_config() -> ParamDBConfig:
    """Create a default configuration with examples."""
    return ParamDBConfig(
        databases=[
            DatabaseConfig(
                name="hydro",
                connection=DatabaseConnection(
                    host="localhost",
                    port=5432,
                    database="hydro_params",
                    user="postgres",
                    password="${POSTGRES_PASSWORD}",
                ),
            )
        ],
        reconcile=ReconcileConfig(overwrite="none", keep_tables=[]),
    )


def _display_config_summary(config: ParamDBConfig):
    """Display configuration summary."""
    console.print("\n[bold]Configuration Summary[/bold]")

    db_table = Table(title="Databases")
    db_table.add_column("Name", style="cyan")
    db_table.add_column("Host", style="magenta")
    db_table.add_column("Database", style="green")
    db_table.add_column("Schema", style="yellow")
    db_table.add_column("Engine")

    for db in config.databases:
        db_table.add_row(
            db.name,
            f"{db.connection.host}:{db.connection.port}",
            db.connection.database,
            db.connection.schema_name,
            db.connection.engine or "auto",
        )
    console.print(db_table)

    reconcile = config.reconcile
    console.print(f"Overwrite policy: {reconcile.overwrite}")
    console.print(f"Keep tables: {', '.join(reconcile.keep_tables) or '-'}")
    console.print(
        f"Target version: {reconcile.target_version if reconcile.target_version is not None else 'latest'}"
    )
    console.print(f"Schema script: {reconcile.schema_file or 'packaged base schema'}")
    console.print(f"Upgrader: {config.upgrade.upgrader or '-'}")


def _display_creation_result(result) -> None:
    """Print the outcome of a creation run."""
    status_style = {
        "success": "green",
        "partial": "yellow",
        "failed": "red",
    }[result.status.value]
    console.print(
        f"\n[bold]Database {result.database}:[/bold] "
        f"[{status_style}]{result.status.value}[/{status_style}] "
        f"({result.execution_time_ms:.1f}ms)"
    )

    summary = Table(title="Summary")
    summary.add_column("Item", style="cyan")
    summary.add_column("Value", style="green")
    summary.add_row("Engine", result.engine_family.value if result.engine_family else "-")
    summary.add_row("Overwrite policy", result.policy.value)
    summary.add_row("Version found", str(result.initial_version))
    summary.add_row("Version recorded", str(result.final_version))

    reconciliation = result.reconciliation
    if reconciliation is not None:
        summary.add_row("Created", ", ".join(reconciliation.created_tables) or "-")
        summary.add_row("Recreated", ", ".join(reconciliation.dropped_tables) or "-")
        summary.add_row("Emptied", ", ".join(reconciliation.emptied_tables) or "-")
        summary.add_row("Preserved", str(len(reconciliation.preserved_tables)))
    summary.add_row("Pruned", ", ".join(result.pruned_tables) or "-")
    statements = SchemaOperations.get_execution_summary(result.changes)
    summary.add_row(
        "Statements",
        f"{statements['successful']} of {statements['total_operations']} executed, "
        f"{statements['failed']} failed",
    )
    summary.add_row(
        "Ledger record",
        str(result.ledger_record.sequence_id) if result.ledger_record else "-",
    )
    console.print(summary)

    if result.warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for warning in result.warnings:
            console.print(f"  • {escape(warning)}")

    if result.errors:
        console.print(f"\n[red]Errors ({len(result.errors)}):[/red]")
        for error in result.errors:
            console.print(f"  • {escape(str(error))}")


if __name__ == "__main__":
    main()
