"""
pgharness - PostgreSQL test harness driver

Runs SQL for tests either in-process over libpq (Session) or through the
psql client (run_psql), with the same structured results and the same
failure semantics on both paths.
"""

from .cluster import RemoteCluster
from .driver import classify_statement, safe_psql
from .errors import (
    ConnectionFailure,
    HarnessError,
    PsqlConnectionError,
    PsqlError,
    PsqlKilled,
    PsqlSQLError,
    PsqlTimeout,
    QueryError,
    UsageError,
)
from .models import (
    MISSING,
    ConnStatus,
    HarnessConfig,
    PsqlOptions,
    PsqlResult,
    QueryResult,
    ResultStatus,
    SessionState,
    StatementPath,
    TimeoutFlag,
)
from .poller import poll_query_until, poll_until_connection
from .psql import PsqlRunner, run_psql
from .session import Session

__version__ = "0.1.0"
__all__ = [
    "RemoteCluster",
    "Session",
    "PsqlRunner",
    "run_psql",
    "safe_psql",
    "classify_statement",
    "poll_query_until",
    "poll_until_connection",
    "MISSING",
    "ConnStatus",
    "HarnessConfig",
    "PsqlOptions",
    "PsqlResult",
    "QueryResult",
    "ResultStatus",
    "SessionState",
    "StatementPath",
    "TimeoutFlag",
    "HarnessError",
    "UsageError",
    "ConnectionFailure",
    "QueryError",
    "PsqlError",
    "PsqlConnectionError",
    "PsqlSQLError",
    "PsqlKilled",
    "PsqlTimeout",
]
