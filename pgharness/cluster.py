"""
A PostgreSQL node that is already running somewhere.

RemoteCluster only describes how to reach the server; starting and
stopping it is someone else's job. It builds connection strings and gives
tests one object to run SQL and polls against:

    node = RemoteCluster("primary", "db.example", 5432, user="tester")
    assert node.safe_psql("postgres", "SELECT 1") == "1"
    node.poll_query_until("postgres", "SELECT pg_is_in_recovery() = false")
"""

from typing import Any, Dict, Optional

from .driver import safe_psql
from .models import HarnessConfig, PsqlOptions, PsqlResult
from .poller import poll_query_until, poll_until_connection
from .psql import PsqlRunner
from .reporting import get_diagnostics
from .session import Connector, Session


def quote_dbname(dbname: str) -> str:
    """Quote a database name for a connection string."""
    escaped = dbname.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class RemoteCluster:
    """
    Connection details for a remote node.

    Extra keyword arguments become extra connection string parameters
    (sslmode, user, passfile, ...), in the order given. Only the database
    name is escaped; other values are used as they are.
    """

    def __init__(
        self,
        name: str,
        host: str,
        port: int,
        libdir: Optional[str] = None,
        config: Optional[HarnessConfig] = None,
        connector: Optional[Connector] = None,
        **params: Any,
    ):
        self.name = name
        self.host = host
        self.port = port
        self.libdir = libdir
        # None means read the environment on every call
        self.config = config
        self.connector = connector
        self.params: Dict[str, Any] = dict(params)

        self.dump_info()

    def connstr(self, dbname: Optional[str] = None) -> str:
        """
        Connection string for this node, optionally for a given database.

        Suitable for Session.connect(), psql -d, or psycopg.connect().
        """
        paramstr = "".join(f" {key}={value}" for key, value in self.params.items())
        if dbname is None:
            return f"port={self.port} host={self.host}{paramstr}"
        return f"port={self.port} host={self.host} dbname={quote_dbname(dbname)}{paramstr}"

    def info(self) -> str:
        """Human-readable description of the node."""
        return f"Name: {self.name}\nConnection string: {self.connstr()}\n"

    def dump_info(self) -> None:
        get_diagnostics().node_info(self.info())

    def session(self, dbname: str = "postgres") -> Session:
        """Open a Session on dbname. Use it as a context manager."""
        return Session.for_cluster(self, dbname, self.connector)

    def psql(
        self,
        dbname: str,
        sql: str,
        options: Optional[PsqlOptions] = None,
    ) -> PsqlResult:
        """
        Run sql on dbname with psql.

        Returns the exit code and output rather than raising on a nonzero
        exit, unless options.on_error_die is set.
        """
        return PsqlRunner(self.config).run(
            self.connstr(dbname), sql, options, libdir=self.libdir
        )

    def safe_psql(
        self,
        dbname: str,
        sql: str,
        options: Optional[PsqlOptions] = None,
    ) -> str:
        """Run sql on dbname and return its output; raise on any error."""
        return safe_psql(self, dbname, sql, options, self.config, self.connector)

    def poll_query_until(self, dbname: str, query: str, expected: str = "t") -> bool:
        """Re-run query until it outputs expected. False if it never does."""
        return poll_query_until(
            self, dbname, query, expected, self.config, self.connector
        )

    def poll_until_connection(self, dbname: str = "postgres") -> bool:
        """Keep trying to connect until it works. False if it never does."""
        return poll_until_connection(self, dbname, self.config, self.connector)
