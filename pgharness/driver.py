"""
Choosing between the in-process session and psql.

A single simple statement with no options runs through a Session, which
avoids spawning a process. Anything else goes through psql.
"""

import dataclasses
from typing import Optional

from .errors import QueryError
from .models import HarnessConfig, PsqlOptions, StatementPath
from .psql import PsqlRunner
from .reporting import get_diagnostics
from .session import Connector, Session, node_connstr


def classify_statement(
    sql: str,
    options: Optional[PsqlOptions] = None,
) -> StatementPath:
    """
    Decide which path safe_psql takes for sql.

    FAST needs some non-whitespace text, no ";" followed by more
    non-whitespace text, and no options. This is a plain character scan:
    a ";" inside a string literal or comment also sends the SQL to psql.
    """
    if options is not None:
        return StatementPath.GENERAL
    if not sql.strip():
        return StatementPath.GENERAL
    terminator = sql.find(";")
    if terminator != -1 and sql[terminator + 1:].strip():
        return StatementPath.GENERAL
    return StatementPath.FAST


def safe_psql(
    cluster: object,
    dbname: str,
    sql: str,
    options: Optional[PsqlOptions] = None,
    config: Optional[HarnessConfig] = None,
    connector: Optional[Connector] = None,
) -> str:
    """
    Run sql on dbname and return its output, raising if anything fails.

    The output is the same on both paths: rows as "|"-separated fields, one
    row per line. psql always runs with ON_ERROR_STOP and on_error_die
    set, whatever options say.
    """
    if classify_statement(sql, options) == StatementPath.FAST:
        with Session.for_cluster(cluster, dbname, connector) as session:
            res = session.query(sql)
        if not res.ok:
            raise QueryError(
                f"error: status = {res.status.value} stderr: "
                f"'{res.error_message or ''}'\nwhile running '{sql}'",
                sql=sql,
                status=res.status,
                error_message=res.error_message or "",
            )
        return res.psqlout

    options = dataclasses.replace(
        options or PsqlOptions(),
        on_error_stop=True,
        on_error_die=True,
    )
    result = PsqlRunner(config).run(
        node_connstr(cluster, dbname),
        sql,
        options,
        libdir=getattr(cluster, "libdir", None),
    )
    # psql can emit stderr from NOTICEs etc
    if result.stderr != "":
        get_diagnostics().standard_error(result.stderr)
    return result.stdout
