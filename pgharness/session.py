"""
In-process database sessions for pgharness.

A Session owns one libpq connection and lets a test run SQL without
spawning psql in a child process. Sessions are context managers; leaving
the block always closes the connection:

    with Session.for_cluster(node, "postgres") as session:
        session.do("CREATE TABLE t (a int)", "INSERT INTO t VALUES (1)")
        assert session.query_oneval("SELECT count(*) FROM t") == "1"
"""

import time
from typing import Callable, Optional, Union

from .errors import ConnectionFailure, QueryError, UsageError
from .models import (
    MISSING,
    Cell,
    ConnStatus,
    QueryResult,
    ResultStatus,
    SessionState,
    _Missing,
)
from .pq import Connection
from .reporting import get_diagnostics
from .results import cell_value, materialize


# Seconds to sleep between checks while async results are still arriving
ASYNC_POLL_INTERVAL = 0.1


Connector = Callable[[str], Connection]


def node_connstr(cluster: object, dbname: Optional[str]) -> str:
    """Ask a node for its connection string, rejecting objects that can't say."""
    connstr = getattr(cluster, "connstr", None)
    if not callable(connstr):
        raise UsageError(f"bad node: {cluster!r} has no connstr()")
    return connstr(dbname)


class Session:
    """
    A connection to one database, opened with Session.connect().

    State moves DISCONNECTED -> CONNECTED on connect, CONNECTED ->
    ASYNC_PENDING on do_async(), back to CONNECTED on wait_for_completion(),
    and to DISCONNECTED on close(). While async results are pending every
    other command is refused, because the server will not accept new work
    on the connection until they have been read.
    """

    def __init__(self, conninfo: str, conn: Connection, connector: Connector):
        self.conninfo = conninfo
        self._conn: Optional[Connection] = conn
        self._connector = connector
        self.state = SessionState.CONNECTED

    @classmethod
    def connect(
        cls,
        conninfo: str,
        connector: Optional[Connector] = None,
    ) -> "Session":
        """
        Open a session.

        Raises ConnectionFailure if the connection does not reach OK status;
        the failed connection is released before raising.
        """
        connector = connector or Connection.connect
        conn = connector(conninfo)
        if conn.status != ConnStatus.OK:
            message = conn.error_message.strip()
            conn.finish()
            raise ConnectionFailure(
                f"could not connect with '{conninfo}': {message}", conninfo
            )
        return cls(conninfo, conn, connector)

    @classmethod
    def for_cluster(
        cls,
        cluster: object,
        dbname: str = "postgres",
        connector: Optional[Connector] = None,
    ) -> "Session":
        """Open a session on a node, which must provide connstr(dbname)."""
        conninfo = node_connstr(cluster, dbname)
        get_diagnostics().connstr("Session", conninfo)
        return cls.connect(conninfo, connector)

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        conn, self._conn = self._conn, None
        self.state = SessionState.DISCONNECTED
        if conn is not None:
            conn.finish()

    def reconnect(self) -> ConnStatus:
        """Close the connection if open, reopen it, and return the new status."""
        self.close()
        conn = self._connector(self.conninfo)
        self._conn = conn
        status = conn.status
        if status == ConnStatus.OK:
            self.state = SessionState.CONNECTED
        return status

    def conn_status(self) -> Optional[ConnStatus]:
        """Status of the connection, or None once the session is closed."""
        if self._conn is None:
            return None
        return self._conn.status

    def _connection(self) -> Connection:
        if self.state == SessionState.ASYNC_PENDING:
            raise UsageError(
                "asynchronous command still pending; call wait_for_completion() first"
            )
        if self._conn is None or self.state != SessionState.CONNECTED:
            raise UsageError("session is not connected")
        return self._conn

    def do(self, *statements: str) -> Optional[ResultStatus]:
        """
        Run statements that return no tuples, in order.

        Stops at the first statement whose status is not COMMAND_OK and
        returns that status; later statements are not sent.
        """
        conn = self._connection()
        status: Optional[ResultStatus] = None
        for sql in statements:
            result = conn.exec(sql)
            try:
                status = result.status
            finally:
                result.clear()
            if status != ResultStatus.COMMAND_OK:
                return status
        return status

    def do_async(self, sql: str) -> bool:
        """Send one statement without waiting. Returns whether it was dispatched."""
        conn = self._connection()
        sent = conn.send_query(sql)
        if sent:
            self.state = SessionState.ASYNC_PENDING
        return sent

    def _get_result(self, conn: Connection):
        while conn.is_busy():
            time.sleep(ASYNC_POLL_INTERVAL)
            if not conn.consume_input():
                # dead connection, let get_result report it
                break
        return conn.get_result()

    def wait_for_completion(self) -> None:
        """Wait for all asynchronous SQL to finish and discard its results."""
        conn = self._conn
        if conn is None:
            raise UsageError("session is not connected")
        while True:
            result = self._get_result(conn)
            if result is None:
                break
            result.clear()
        if self.state == SessionState.ASYNC_PENDING:
            self.state = SessionState.CONNECTED

    def set_password(self, user: str, password: str) -> QueryResult:
        """Change a user's password. The password never travels in clear text."""
        conn = self._connection()
        result = conn.change_password(user, password)
        try:
            return materialize(result, conn)
        finally:
            result.clear()

    def query(self, sql: str) -> QueryResult:
        """Run SQL that might return tuples."""
        conn = self._connection()
        result = conn.exec(sql)
        try:
            return materialize(result, conn)
        finally:
            result.clear()

    def query_oneval(self, sql: str, missing_ok: bool = False) -> Union[Cell, _Missing]:
        """
        Run a query expected to return one row with one column.

        Returns the value (None for NULL). If missing_ok is set and no row
        comes back, returns MISSING. Any other shape raises UsageError, and
        a failed query raises QueryError.
        """
        conn = self._connection()
        result = conn.exec(sql)
        try:
            status = result.status
            if status != ResultStatus.TUPLES_OK:
                error_message = conn.error_message
                raise QueryError(
                    error_message.strip() or f"query returned status {status.value}",
                    sql=sql,
                    status=status,
                    error_message=error_message,
                )
            ntuples = result.ntuples
            if missing_ok and ntuples == 0:
                return MISSING
            nfields = result.nfields
            if ntuples != 1 or nfields != 1:
                raise UsageError(f"{ntuples} tuples != 1 or {nfields} fields != 1")
            return cell_value(result, 0, 0)
        finally:
            result.clear()

    def query_tuples(self, *statements: str) -> str:
        """
        Run queries and return their rows as text, like ``psql -A -t``.

        Queries that return no rows contribute nothing; the output of the
        others is separated by a blank line.
        """
        blocks = []
        for sql in statements:
            res = self.query(sql)
            if res.status != ResultStatus.TUPLES_OK:
                raise QueryError(
                    (res.error_message or "").strip()
                    or f"query returned status {res.status.value}",
                    sql=sql,
                    status=res.status,
                    error_message=res.error_message or "",
                )
            if not res.rows:
                continue
            blocks.append(res.psqlout)
        return "\n\n".join(blocks)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
