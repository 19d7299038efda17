"""
Exception types for pgharness.

Every failure the harness reports is raised as a subclass of HarnessError
so test code can catch the whole family with a single except clause.
"""

from typing import List, Optional, Sequence


class HarnessError(Exception):
    """Base class for all pgharness errors."""
    pass


class UsageError(HarnessError):
    """Raised when the harness is called in a way it cannot honour."""
    pass


class ConnectionFailure(HarnessError):
    """Raised when a session cannot be opened or a command cannot be sent."""

    def __init__(self, message: str, conninfo: Optional[str] = None):
        super().__init__(message)
        self.conninfo = conninfo


class QueryError(HarnessError):
    """Raised when a statement run through a session does not succeed."""

    def __init__(
        self,
        message: str,
        sql: Optional[str] = None,
        status: Optional[object] = None,
        error_message: str = "",
    ):
        super().__init__(message)
        self.sql = sql
        self.status = status
        self.error_message = error_message


class PsqlError(HarnessError):
    """
    Raised when a psql invocation fails.

    Used directly for exit code 1 and for exit codes psql does not document.
    """

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        stderr: str = "",
        returncode: Optional[int] = None,
    ):
        super().__init__(message)
        self.command: List[str] = list(command)
        self.stderr = stderr
        self.returncode = returncode


class PsqlConnectionError(PsqlError):
    """psql could not connect to the server (exit code 2)."""
    pass


class PsqlSQLError(PsqlError):
    """An SQL statement failed while ON_ERROR_STOP was set (exit code 3)."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        stderr: str = "",
        returncode: Optional[int] = None,
        sql: str = "",
    ):
        super().__init__(message, command, stderr, returncode)
        self.sql = sql


class PsqlKilled(PsqlError):
    """psql was terminated by a signal."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        stderr: str = "",
        signal: int = 0,
        core_dumped: bool = False,
    ):
        super().__init__(message, command, stderr)
        self.signal = signal
        self.core_dumped = core_dumped


class PsqlTimeout(PsqlError):
    """psql exceeded its timeout and the caller did not ask to be told quietly."""
    pass
