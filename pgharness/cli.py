"""
CLI entry point for pgharness.

Uses Click for argument parsing. Each command builds a RemoteCluster from
the connection options and runs one harness operation against it, which
is handy for checking a server by hand before pointing tests at it.
"""

import os
import sys
from typing import Optional, Tuple

import click
from rich.console import Console

from .cluster import RemoteCluster
from .errors import HarnessError
from .models import MISSING, HarnessConfig, PsqlOptions, TimeoutFlag
from .reporting import Diagnostics, get_diagnostics, result_table, set_diagnostics


def _parse_params(values: Tuple[str, ...]) -> dict:
    params = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{value}'", param_hint="--param")
        params[key] = val
    return params


def _fail(error: HarnessError) -> None:
    get_diagnostics().print_error(str(error))
    sys.exit(1)


@click.group()
@click.option(
    "--host",
    default=lambda: os.environ.get("PGHOST", "localhost"),
    show_default="PGHOST or localhost",
    help="Server host name or socket directory",
)
@click.option(
    "--port",
    default=lambda: int(os.environ.get("PGPORT", "5432")),
    type=int,
    show_default="PGPORT or 5432",
    help="Server port",
)
@click.option(
    "--name",
    default="remote",
    help="Node name used in diagnostics (default: remote)",
)
@click.option(
    "-P", "--param", "params",
    multiple=True,
    help="Extra connection parameter KEY=VALUE (can be repeated)",
)
@click.option(
    "--libdir",
    type=click.Path(file_okay=False),
    help="Client library directory for psql",
)
@click.option(
    "-q", "--quiet",
    is_flag=True,
    help="Suppress diagnostics",
)
@click.option(
    "--no-color",
    is_flag=True,
    help="Disable colored output",
)
@click.version_option(version="0.1.0", prog_name="pgharness")
@click.pass_context
def main(
    ctx: click.Context,
    host: str,
    port: int,
    name: str,
    params: Tuple[str, ...],
    libdir: Optional[str],
    quiet: bool,
    no_color: bool,
):
    """
    pgharness - run SQL against a PostgreSQL server the way tests do

    \b
    Examples:
        pgharness query postgres "SELECT 1"
        pgharness -P user=tester psql postgres "SELECT 1; SELECT 2"
        pgharness poll postgres "SELECT pg_is_in_recovery()" --expected f
        pgharness wait-ready postgres
    """
    config = HarnessConfig.from_env()
    set_diagnostics(Diagnostics(quiet=quiet or config.quiet, no_color=no_color))
    ctx.obj = RemoteCluster(
        name, host, port, libdir=libdir, config=config, **_parse_params(params)
    )


@main.command()
@click.pass_obj
def info(node: RemoteCluster):
    """Show the node's name and connection string."""
    click.echo(node.info(), nl=False)


@main.command()
@click.argument("dbname")
@click.argument("sql")
@click.option(
    "--table",
    is_flag=True,
    help="Show a table with column names instead of psql-style output",
)
@click.pass_obj
def query(node: RemoteCluster, dbname: str, sql: str, table: bool):
    """Run SQL with safe_psql and print its output."""
    try:
        if table:
            with node.session(dbname) as session:
                result = session.query(sql)
            if not result.ok:
                get_diagnostics().print_error((result.error_message or "").strip())
                sys.exit(1)
            Console().print(result_table(result))
            return
        output = node.safe_psql(dbname, sql)
    except HarnessError as e:
        _fail(e)
    if output:
        click.echo(output)


@main.command()
@click.argument("dbname")
@click.argument("sql")
@click.option(
    "--missing-ok",
    is_flag=True,
    help="Print nothing instead of failing when no row comes back",
)
@click.pass_obj
def oneval(node: RemoteCluster, dbname: str, sql: str, missing_ok: bool):
    """Run a single-value query and print the value."""
    try:
        with node.session(dbname) as session:
            value = session.query_oneval(sql, missing_ok=missing_ok)
    except HarnessError as e:
        _fail(e)
    if value is MISSING:
        return
    click.echo("" if value is None else value)


@main.command()
@click.argument("dbname")
@click.argument("sql")
@click.option(
    "--timeout",
    type=float,
    help="Seconds before psql is killed",
)
@click.option(
    "--no-error-stop",
    is_flag=True,
    help="Keep going after a failing statement",
)
@click.option(
    "-x", "--extra", "extra_params",
    multiple=True,
    help="Extra psql argument (can be repeated)",
)
@click.pass_obj
def psql(
    node: RemoteCluster,
    dbname: str,
    sql: str,
    timeout: Optional[float],
    no_error_stop: bool,
    extra_params: Tuple[str, ...],
):
    """Run SQL through psql and exit with psql's exit code."""
    timed_out = TimeoutFlag()
    options = PsqlOptions(
        timeout=timeout,
        timed_out=timed_out,
        extra_params=list(extra_params),
        on_error_stop=not no_error_stop,
    )
    try:
        result = node.psql(dbname, sql, options)
    except HarnessError as e:
        _fail(e)
    if result.stdout:
        click.echo(result.stdout)
    if result.stderr:
        get_diagnostics().standard_error(result.stderr)
    if timed_out:
        get_diagnostics().print_error(f"psql timed out after {timeout}s")
        sys.exit(1)
    sys.exit(result.returncode)


@main.command()
@click.argument("dbname")
@click.argument("query_sql", metavar="QUERY")
@click.option(
    "--expected",
    default="t",
    help="Output to wait for (default: t)",
)
@click.pass_obj
def poll(node: RemoteCluster, dbname: str, query_sql: str, expected: str):
    """Re-run QUERY until it prints EXPECTED or the timeout runs out."""
    try:
        ok = node.poll_query_until(dbname, query_sql, expected)
    except HarnessError as e:
        _fail(e)
    sys.exit(0 if ok else 1)


@main.command("wait-ready")
@click.argument("dbname", default="postgres")
@click.pass_obj
def wait_ready(node: RemoteCluster, dbname: str):
    """Wait until the server accepts connections."""
    ok = node.poll_until_connection(dbname)
    if not ok:
        get_diagnostics().print_error(f"could not connect to {node.connstr(dbname)}")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
