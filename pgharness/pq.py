"""
Protocol binding for pgharness.

Thin adapter over psycopg's low-level libpq wrapper (psycopg.pq). The rest
of the package only talks to the Connection and Result classes below, using
str in and out, so libpq calls stay in one place and tests can substitute
scripted fakes with the same methods.
"""

from typing import Optional

import psycopg
from psycopg import pq

from .errors import ConnectionFailure
from .models import ConnStatus, ResultStatus


_EXEC_STATUS = {
    pq.ExecStatus.COMMAND_OK: ResultStatus.COMMAND_OK,
    pq.ExecStatus.TUPLES_OK: ResultStatus.TUPLES_OK,
    pq.ExecStatus.BAD_RESPONSE: ResultStatus.ERROR,
    pq.ExecStatus.NONFATAL_ERROR: ResultStatus.ERROR,
    pq.ExecStatus.FATAL_ERROR: ResultStatus.ERROR,
}


class Result:
    """A libpq result set. Must be cleared by whoever fetched it."""

    def __init__(self, pgresult: "pq.abc.PGresult", encoding: str = "utf-8"):
        self._res = pgresult
        self._encoding = encoding

    @property
    def status(self) -> ResultStatus:
        return _EXEC_STATUS.get(self._res.status, ResultStatus.OTHER)

    @property
    def ntuples(self) -> int:
        return self._res.ntuples

    @property
    def nfields(self) -> int:
        return self._res.nfields

    def fname(self, column: int) -> str:
        name = self._res.fname(column)
        return name.decode(self._encoding) if name is not None else ""

    def ftype(self, column: int) -> int:
        return self._res.ftype(column)

    def get_value(self, row: int, column: int) -> str:
        """Text of a cell. NULL comes back as "", use get_is_null to tell."""
        value = self._res.get_value(row, column)
        if value is None:
            return ""
        return value.decode(self._encoding)

    def get_is_null(self, row: int, column: int) -> bool:
        # psycopg folds PQgetisnull into get_value returning None
        return self._res.get_value(row, column) is None

    def clear(self) -> None:
        self._res.clear()


class Connection:
    """
    A libpq connection.

    Created with Connection.connect(), which always returns an object even
    when the connection failed; check status before using it and call
    finish() either way.
    """

    def __init__(self, pgconn: "pq.abc.PGconn"):
        self._pgconn = pgconn
        self._encoding: Optional[str] = None

    @classmethod
    def connect(cls, conninfo: str) -> "Connection":
        return cls(pq.PGconn.connect(conninfo.encode("utf-8")))

    @property
    def encoding(self) -> str:
        if self._encoding is None:
            self._encoding = psycopg.ConnectionInfo(self._pgconn).encoding
        return self._encoding

    @property
    def status(self) -> ConnStatus:
        if self._pgconn.status == pq.ConnStatus.OK:
            return ConnStatus.OK
        return ConnStatus.BAD

    @property
    def error_message(self) -> str:
        return self._pgconn.error_message.decode(self.encoding, errors="replace")

    def exec(self, sql: str) -> Result:
        return self._exec_bytes(sql.encode(self.encoding))

    def _exec_bytes(self, command: bytes) -> Result:
        try:
            pgresult = self._pgconn.exec_(command)
        except psycopg.OperationalError as e:
            raise ConnectionFailure(f"executing query failed: {e}") from e
        return Result(pgresult, self.encoding)

    def send_query(self, sql: str) -> bool:
        try:
            self._pgconn.send_query(sql.encode(self.encoding))
        except psycopg.OperationalError:
            return False
        return True

    def is_busy(self) -> bool:
        return bool(self._pgconn.is_busy())

    def consume_input(self) -> bool:
        try:
            self._pgconn.consume_input()
        except psycopg.OperationalError:
            return False
        return True

    def get_result(self) -> Optional[Result]:
        pgresult = self._pgconn.get_result()
        if pgresult is None:
            return None
        return Result(pgresult, self.encoding)

    def change_password(self, user: str, password: str) -> Result:
        """
        Set a role's password without sending it in clear text.

        Same approach as libpq's PQchangePassword: encrypt client side with
        the server's preferred algorithm, then ALTER USER.
        """
        encoding = self.encoding
        try:
            encrypted = self._pgconn.encrypt_password(
                password.encode(encoding), user.encode(encoding)
            )
        except psycopg.OperationalError as e:
            raise ConnectionFailure(f"password encryption failed: {e}") from e
        ident = pq.Escaping(self._pgconn).escape_identifier(user.encode(encoding))
        return self._exec_bytes(b"ALTER USER " + ident + b" PASSWORD '" + encrypted + b"'")

    def finish(self) -> None:
        self._pgconn.finish()
