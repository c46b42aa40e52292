#!/usr/bin/env python3
"""
chousun CLI - Command-line access to a ClickHouse server over HTTP

Usage:
    chousun --help
    chousun ping
    chousun query "SELECT * FROM events LIMIT 10"
    chousun write "INSERT INTO events VALUES (1, 'a')"
    chousun export "SELECT * FROM events" events.csv.gz --gzip
"""

import json
import logging
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from chousun import __version__
from chousun.client import Chousun
from chousun.config import ConnectionConfig
from chousun.core.files import WriteToFile
from chousun.core.sql import StatementText
from chousun.exceptions import ChousunError

# =============================================================================
# CONFIGURATION
# =============================================================================

console = Console()


def get_client(ctx) -> Chousun:
    """Build a client from the group options."""
    config = ConnectionConfig(
        host=ctx.obj["host"],
        port=ctx.obj["port"],
        database=ctx.obj["database"],
        username=ctx.obj["user"],
        password=ctx.obj["password"],
        https=ctx.obj["https"],
    )
    return Chousun(config)


def fail(error: Exception):
    """Print an error in red and exit 1."""
    console.print(f"[bold red]Error:[/bold red] [red]{escape(str(error))}[/red]")
    sys.exit(1)


def render_rows(statement):
    """Show a JSON result as a table."""
    meta = statement.meta()
    columns = [column["name"] for column in meta] or list((statement.fetch_one() or {}).keys())

    table = Table(show_header=True)
    for column in columns:
        table.add_column(column, style="cyan")

    for row in statement.rows():
        table.add_row(*[str(row.get(column)) for column in columns])

    console.print(table)
    console.print(f"[dim]{statement.count_rows()} row(s)[/dim]")


# =============================================================================
# MAIN CLI GROUP
# =============================================================================

@click.group()
@click.option("--host", envvar="CH_HOST", default="127.0.0.1", show_default=True, help="Server host")
@click.option("--port", envvar="CH_PORT", default=8123, show_default=True, type=int, help="Server HTTP port")
@click.option("--database", envvar="CH_DATABASE", default="default", show_default=True, help="Database")
@click.option("--user", envvar="CH_USERNAME", default="default", show_default=True, help="User name")
@click.option("--password", envvar="CH_PASSWORD", default=None, help="Password")
@click.option("--https", is_flag=True, help="Connect over HTTPS")
@click.option("--verbose", "-v", is_flag=True, help="Log requests and compiled SQL")
@click.version_option(version=__version__, prog_name="chousun")
@click.pass_context
def cli(ctx, host, port, database, user, password, https, verbose):
    """
    chousun CLI - Query a ClickHouse server over its HTTP interface.

    \b
    Environment Variables:
        CH_HOST, CH_PORT, CH_DATABASE, CH_USERNAME, CH_PASSWORD
    """
    ctx.ensure_object(dict)
    ctx.obj.update(host=host, port=port, database=database, user=user, password=password, https=https)

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s %(message)s")


# =============================================================================
# COMMANDS
# =============================================================================

@cli.command()
@click.pass_context
def ping(ctx):
    """Check that the server answers."""
    try:
        client = get_client(ctx)
        alive = client.ping()
    except ChousunError as e:
        fail(e)

    if not alive:
        console.print(f"[red]✗ No answer from {client.transport.uri()}[/red]")
        sys.exit(1)
    console.print(f"[green]✓[/green] {client.transport.uri()} is alive")


@cli.command()
@click.argument("sql")
@click.option("--format", "output_format", default="JSON", show_default=True, help="Output format")
@click.pass_context
def query(ctx, sql, output_format):
    """Run a select and print the result."""
    try:
        client = get_client(ctx)
        statement = client.select(StatementText(sql).set_format(output_format))
        if statement.is_error():
            statement.error()

        if statement.format == "JSON":
            render_rows(statement)
        elif statement.format == "JSONEachRow":
            console.print(Syntax(json.dumps(statement.rows(), indent=2), "json"))
        else:
            click.echo(statement.raw().decode("utf-8", errors="replace"), nl=False)
    except ChousunError as e:
        fail(e)


@cli.command()
@click.argument("sql")
@click.pass_context
def write(ctx, sql):
    """Run a write statement (INSERT, CREATE, ALTER, ...)."""
    try:
        get_client(ctx).write(sql)
    except ChousunError as e:
        fail(e)
    console.print("[green]✓[/green] Done")


@cli.command()
@click.argument("sql")
@click.argument("file", type=click.Path(dir_okay=False))
@click.option(
    "--format", "output_format",
    type=click.Choice(WriteToFile.SUPPORTED_FORMATS),
    default=WriteToFile.FORMAT_CSV,
    show_default=True,
)
@click.option("--gzip", "use_gzip", is_flag=True, help="Gzip the output file")
@click.pass_context
def export(ctx, sql, file, output_format, use_gzip):
    """Stream a select's result into FILE."""
    try:
        sink = WriteToFile(file, format=output_format).set_gzip(use_gzip)
        statement = get_client(ctx).select(sql, write_to_file=sink)
        if statement.is_error():
            statement.error()
    except ChousunError as e:
        fail(e)
    console.print(f"[green]✓[/green] Wrote {file}")


def main():
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
