"""
Data models for pgharness.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, TextIO, Union


class ResultStatus(str, Enum):
    """Status of a single statement's result."""
    COMMAND_OK = "command_ok"
    TUPLES_OK = "tuples_ok"
    ERROR = "error"
    OTHER = "other"


class ConnStatus(str, Enum):
    """Status of a protocol connection."""
    OK = "ok"
    BAD = "bad"


class SessionState(str, Enum):
    """Lifecycle state of a Session."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ASYNC_PENDING = "async_pending"


class StatementPath(str, Enum):
    """Which execution path safe_psql takes for a piece of SQL."""
    FAST = "fast"
    GENERAL = "general"


class _Missing:
    """Marker returned by query_oneval when no row came back."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


Cell = Optional[str]


@dataclass
class QueryResult:
    """
    Structured result of one statement.

    names, types and rows are only filled for TUPLES_OK results, and
    psqlout is only non-empty when there is at least one row. A cell is
    None for SQL NULL and "" for an empty string.
    """
    status: ResultStatus
    error_message: Optional[str] = None
    names: List[str] = field(default_factory=list)
    types: List[int] = field(default_factory=list)
    rows: List[List[Cell]] = field(default_factory=list)
    psqlout: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (ResultStatus.COMMAND_OK, ResultStatus.TUPLES_OK)


@dataclass(frozen=True)
class Completed:
    """psql ran to completion with the given exit code."""
    exit_code: int


@dataclass(frozen=True)
class Killed:
    """psql was terminated by a signal."""
    signal: int
    core_dumped: bool = False


@dataclass(frozen=True)
class TimedOut:
    """psql exceeded its timeout and was killed."""
    pass


ProcessOutcome = Union[Completed, Killed, TimedOut]


@dataclass
class TimeoutFlag:
    """
    Slot a caller hands to run_psql to be told about a timeout.

    Supplying one turns a timeout into a normal return with the flag set;
    without it a timeout raises PsqlTimeout.
    """
    value: bool = False

    def __bool__(self) -> bool:
        return self.value


@dataclass
class PsqlOptions:
    """Options for a single psql invocation."""
    stdout: Optional[TextIO] = None
    stderr: Optional[TextIO] = None
    timeout: Optional[float] = None
    timed_out: Optional[TimeoutFlag] = None
    extra_params: List[str] = field(default_factory=list)
    on_error_stop: bool = True
    on_error_die: bool = False
    connstr: Optional[str] = None
    replication: Optional[str] = None


@dataclass
class PsqlResult:
    """What came back from psql. returncode is None when it timed out."""
    returncode: Optional[int]
    stdout: str
    stderr: str
    outcome: ProcessOutcome


@dataclass
class HarnessConfig:
    """Process-wide settings, normally read from the environment."""
    timeout_default: float = 180.0
    psql: str = "psql"
    quiet: bool = False

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        """
        Build a config from environment variables.

        PG_TEST_TIMEOUT_DEFAULT  seconds of global timeout (default: 180)
        PSQL                     psql program to run    (default: psql)
        PGHARNESS_QUIET          suppress diagnostics   (default: off)
        """
        timeout = os.environ.get("PG_TEST_TIMEOUT_DEFAULT") or "180"
        return cls(
            timeout_default=float(timeout),
            psql=os.environ.get("PSQL") or "psql",
            quiet=os.environ.get("PGHARNESS_QUIET", "") not in ("", "0"),
        )


@dataclass(frozen=True)
class PollBudget:
    """Sleep interval and retry count for one polling call."""
    interval: float = 0.1
    max_attempts: int = 1800

    @classmethod
    def from_config(cls, config: HarnessConfig) -> "PollBudget":
        return cls(interval=0.1, max_attempts=int(10 * config.timeout_default))
