"""Command line interface for metacache."""

import logging
from pathlib import Path
from typing import Optional

import click
import duckdb
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .catalog import DuckDBCatalog
from .config import config_manager
from .exceptions import MetaCacheError
from .models import CatalogEntity, EntityKind

KIND_STYLES = {
    EntityKind.TABLE: "cyan",
    EntityKind.VIEW: "magenta",
    EntityKind.SYSTEM_TABLE: "dim",
}


def setup_logging(level: int, console: Console) -> None:
    """Route library logging through rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def open_database(database: str) -> duckdb.DuckDBPyConnection:
    if database == ":memory:":
        return duckdb.connect(database)
    return duckdb.connect(database, read_only=True)


def catalog_name(database: str) -> str:
    if database == ":memory:":
        return "memory"
    return Path(database).stem


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool):
    """metacache - Browse database structure through a lazy metadata cache.

    Schemas, tables, columns and constraints are read on first access and
    kept for the rest of the command.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = Console()

    try:
        if config:
            config_manager.config_path = config
            config_manager.reload()
        ctx.obj["config"] = config_manager.config
    except MetaCacheError as e:
        click.secho(f"Error loading configuration: {e}", fg="red", err=True)
        ctx.exit(1)

    level = logging.DEBUG if verbose else ctx.obj["config"].logging.level_number
    setup_logging(level, Console(stderr=True))


@cli.command()
@click.argument("database", type=str)
@click.option("--schema", "-s", "schema_name", type=str, default=None, help="Show only this schema")
@click.option(
    "--depth",
    "-d",
    type=click.IntRange(1, 3),
    default=2,
    show_default=True,
    help="1: schemas, 2: tables, 3: columns and constraints",
)
@click.pass_context
def tree(ctx: click.Context, database: str, schema_name: Optional[str], depth: int):
    """Print the structure of a DuckDB database as a tree.

    DATABASE: Path to a DuckDB file (or :memory:)
    """
    console: Console = ctx.obj["console"]
    catalog = DuckDBCatalog(catalog_name(database), ctx.obj["config"])

    try:
        with open_database(database) as connection:
            load_ctx = catalog.context(connection)
            if schema_name:
                schema = catalog.get_schema(load_ctx, schema_name)
                if schema is None:
                    click.secho(f"Schema {schema_name!r} not found", fg="red", err=True)
                    ctx.exit(1)
                schemas = [schema]
            else:
                schemas = catalog.get_schemas(load_ctx)

            root = Tree(f"[bold blue]{catalog.root.name}[/bold blue]")
            for schema in schemas:
                _add_schema(root, catalog, load_ctx, schema, depth)
            console.print(root)

    except (MetaCacheError, duckdb.Error) as e:
        click.secho(f"Error reading catalog: {e}", fg="red", err=True)
        if ctx.obj["verbose"]:
            click.echo(f"Details: {e!r}", err=True)
        ctx.exit(1)


def _add_schema(root: Tree, catalog: DuckDBCatalog, load_ctx, schema: CatalogEntity, depth: int) -> None:
    branch = root.add(f"[bold]{schema.name}[/bold]")
    if depth < 2:
        return
    if depth >= 3:
        catalog.cache_structure(load_ctx, schema)

    for table in catalog.get_tables(load_ctx, schema):
        style = KIND_STYLES.get(table.kind, "white")
        node = branch.add(f"[{style}]{table.name}[/{style}] [dim]{table.kind.value}[/dim]")
        if depth < 3:
            continue
        for column in catalog.get_columns(load_ctx, table):
            null = "" if column.nullable else " not null"
            node.add(f"{column.name} [green]{column.type_name}[/green][dim]{null}[/dim]")
        for constraint in catalog.get_constraints(load_ctx, table):
            columns = ", ".join(constraint.column_names)
            node.add(f"[yellow]{constraint.constraint_type.value}[/yellow] ({columns})")


@cli.command()
@click.argument("database", type=str)
@click.argument("table_path", metavar="SCHEMA.TABLE")
@click.pass_context
def describe(ctx: click.Context, database: str, table_path: str):
    """Describe one table: columns, constraints and indexes.

    Only the named schema and table are looked up, not their siblings.
    """
    console: Console = ctx.obj["console"]
    catalog = DuckDBCatalog(catalog_name(database), ctx.obj["config"])

    try:
        with open_database(database) as connection:
            load_ctx = catalog.context(connection)
            table = catalog.find_table(load_ctx, table_path)
            if table is None:
                click.secho(f"Table {table_path!r} not found", fg="red", err=True)
                ctx.exit(1)

            console.print(f"[bold]{table.qualified_name}[/bold] [dim]{table.kind.value}[/dim]")
            console.print(_columns_table(catalog.get_columns(load_ctx, table)))

            constraints = catalog.get_constraints(load_ctx, table)
            if constraints:
                console.print(_constraints_table(constraints))
            indexes = catalog.get_indexes(load_ctx, table)
            if indexes:
                console.print(_indexes_table(indexes))

    except (MetaCacheError, duckdb.Error) as e:
        click.secho(f"Error describing {table_path}: {e}", fg="red", err=True)
        if ctx.obj["verbose"]:
            click.echo(f"Details: {e!r}", err=True)
        ctx.exit(1)


def _columns_table(columns) -> Table:
    table = Table(title="Columns", show_header=True, header_style="bold blue")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Type", style="green")
    table.add_column("Nullable", justify="center")
    table.add_column("Default", style="yellow")

    for column in columns:
        table.add_row(
            str(column.ordinal),
            column.name,
            column.type_name,
            "yes" if column.nullable else "no",
            column.default or "",
        )
    return table


def _constraints_table(constraints) -> Table:
    table = Table(title="Constraints", show_header=True, header_style="bold blue")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Type", style="yellow")
    table.add_column("Columns")

    for constraint in constraints:
        table.add_row(
            constraint.name,
            constraint.constraint_type.value,
            ", ".join(constraint.column_names),
        )
    return table


def _indexes_table(indexes) -> Table:
    table = Table(title="Indexes", show_header=True, header_style="bold blue")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Unique", justify="center")
    table.add_column("Columns")

    for index in indexes:
        table.add_row(index.name, "yes" if index.unique else "no", ", ".join(index.column_names))
    return table


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
