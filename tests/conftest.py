"""
Shared pytest fixtures for pgharness tests.

Most tests run without a server: the protocol binding is replaced by
scripted fakes with the same methods as pgharness.pq.Connection/Result,
and psql is replaced by a small Python program driven by environment
variables.

Configuration via environment variables:
    PGHARNESS_LIVE      set to 1 to run tests marked ``live``
    PGHOST              PostgreSQL host for live tests (default: localhost)
    PGPORT              PostgreSQL port for live tests (default: 5432)
    PGUSER              PostgreSQL user for live tests (default: postgres)

Run tests:
    pytest                          # fakes only, live tests skipped
    PGHARNESS_LIVE=1 pytest         # include live server tests
    pytest -k "session"             # filter by name
"""

from __future__ import annotations

import io
import os
import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Union

import pytest
from rich.console import Console

from pgharness.models import ConnStatus, HarnessConfig, ResultStatus
from pgharness.reporting import Diagnostics, set_diagnostics


# ---------------------------------------------------------------------------
# Fake protocol binding
# ---------------------------------------------------------------------------

class FakeResult:
    """Scripted result set with the methods of pgharness.pq.Result."""

    def __init__(
        self,
        status: ResultStatus = ResultStatus.COMMAND_OK,
        rows: Optional[List[List[Optional[str]]]] = None,
        names: Optional[List[str]] = None,
        types: Optional[List[int]] = None,
    ):
        self.status = status
        self.rows = rows or []
        width = len(self.rows[0]) if self.rows else len(names or [])
        self.names = names if names is not None else [f"col{i}" for i in range(width)]
        self.types = types if types is not None else [25] * len(self.names)
        self.cleared = 0
        self.null_checks: List[tuple] = []

    @classmethod
    def tuples(cls, rows: List[List[Optional[str]]], names: Optional[List[str]] = None) -> "FakeResult":
        return cls(ResultStatus.TUPLES_OK, rows=rows, names=names)

    @classmethod
    def error(cls) -> "FakeResult":
        return cls(ResultStatus.ERROR)

    @property
    def ntuples(self) -> int:
        return len(self.rows)

    @property
    def nfields(self) -> int:
        return len(self.names)

    def fname(self, column: int) -> str:
        return self.names[column]

    def ftype(self, column: int) -> int:
        return self.types[column]

    def get_value(self, row: int, column: int) -> str:
        value = self.rows[row][column]
        return "" if value is None else value

    def get_is_null(self, row: int, column: int) -> bool:
        self.null_checks.append((row, column))
        return self.rows[row][column] is None

    def clear(self) -> None:
        self.cleared += 1


Response = Union[FakeResult, Callable[[], FakeResult]]


class FakeConnection:
    """
    Scripted connection with the methods of pgharness.pq.Connection.

    responses maps SQL text to the result exec() returns for it; anything
    else gets COMMAND_OK. async_results are handed out by get_result()
    after a send_query(), once is_busy() has reported busy busy_polls times.
    """

    def __init__(
        self,
        status: ConnStatus = ConnStatus.OK,
        responses: Optional[Dict[str, Response]] = None,
        error_message: str = "",
        busy_polls: int = 0,
        async_results: Optional[List[FakeResult]] = None,
        consume_ok: bool = True,
        send_ok: bool = True,
    ):
        self.status = status
        self.responses = responses or {}
        self.error_message = error_message
        self.busy_polls = busy_polls
        self.async_results = list(async_results or [])
        self.consume_ok = consume_ok
        self.send_ok = send_ok

        self.executed: List[str] = []
        self.sent: List[str] = []
        self.results: List[FakeResult] = []
        self.passwords: List[tuple] = []
        self.busy_checks = 0
        self.consumed = 0
        self.finished = 0
        self._pending: List[FakeResult] = []
        self._busy_remaining = 0

    def _respond(self, sql: str) -> FakeResult:
        response = self.responses.get(sql, FakeResult())
        result = response() if callable(response) else response
        self.results.append(result)
        return result

    def exec(self, sql: str) -> FakeResult:
        self.executed.append(sql)
        return self._respond(sql)

    def send_query(self, sql: str) -> bool:
        self.sent.append(sql)
        if not self.send_ok:
            return False
        self._pending = list(self.async_results) or [self._respond(sql)]
        self._busy_remaining = self.busy_polls
        return True

    def is_busy(self) -> bool:
        self.busy_checks += 1
        return self._busy_remaining > 0

    def consume_input(self) -> bool:
        self.consumed += 1
        if not self.consume_ok:
            return False
        self._busy_remaining -= 1
        return True

    def get_result(self) -> Optional[FakeResult]:
        if self._pending:
            return self._pending.pop(0)
        return None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def change_password(self, user: str, password: str) -> FakeResult:
        self.passwords.append((user, password))
        result = FakeResult()
        self.results.append(result)
        return result

    def finish(self) -> None:
        self.finished += 1


class FakeConnector:
    """Hands out prepared connections in order; records each conninfo."""

    def __init__(self, *connections: FakeConnection):
        self.connections = list(connections)
        self.conninfos: List[str] = []
        self.handed_out: List[FakeConnection] = []

    def __call__(self, conninfo: str) -> FakeConnection:
        self.conninfos.append(conninfo)
        conn = self.connections.pop(0) if self.connections else FakeConnection()
        self.handed_out.append(conn)
        return conn


class FakeCluster:
    """Minimal node: just connstr() and libdir."""

    def __init__(self, libdir: Optional[str] = None):
        self.libdir = libdir

    def connstr(self, dbname: Optional[str] = None) -> str:
        if dbname is None:
            return "port=5432 host=localhost"
        return f"port=5432 host=localhost dbname='{dbname}'"


# ---------------------------------------------------------------------------
# Fake psql program
# ---------------------------------------------------------------------------

FAKE_PSQL_SOURCE = textwrap.dedent('''
    import json
    import os
    import signal
    import sys
    import time

    sql = sys.stdin.read()
    log = os.environ.get("FAKE_PSQL_LOG")
    if log:
        with open(log, "w") as f:
            json.dump({
                "args": sys.argv[1:],
                "sql": sql,
                "ld_library_path": os.environ.get("LD_LIBRARY_PATH"),
            }, f)

    sys.stdout.write(os.environ.get("FAKE_PSQL_STDOUT", ""))
    sys.stdout.flush()
    sys.stderr.write(os.environ.get("FAKE_PSQL_STDERR", ""))
    sys.stderr.flush()

    time.sleep(float(os.environ.get("FAKE_PSQL_SLEEP", "0")))
    if os.environ.get("FAKE_PSQL_SIGNAL"):
        os.kill(os.getpid(), int(os.environ["FAKE_PSQL_SIGNAL"]))
        time.sleep(5)
    if os.environ.get("FAKE_PSQL_ABORT"):
        import resource
        _, hard = resource.getrlimit(resource.RLIMIT_CORE)
        resource.setrlimit(resource.RLIMIT_CORE, (hard, hard))
        # keep any core file out of the working tree
        os.chdir(os.environ["FAKE_PSQL_ABORT"])
        os.abort()
    sys.exit(int(os.environ.get("FAKE_PSQL_EXIT", "0")))
''')


@pytest.fixture()
def fake_psql(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Path to an executable that behaves like a scriptable psql.

    Behaviour comes from FAKE_PSQL_STDOUT, FAKE_PSQL_STDERR, FAKE_PSQL_EXIT,
    FAKE_PSQL_SLEEP, FAKE_PSQL_SIGNAL and FAKE_PSQL_ABORT (a directory to
    abort in, with core dumps enabled); FAKE_PSQL_LOG (set by this
    fixture) receives the arguments and stdin it was given.
    """
    script = tmp_path / "fake_psql.py"
    script.write_text(FAKE_PSQL_SOURCE)
    wrapper = tmp_path / "psql"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    for var in ("FAKE_PSQL_STDOUT", "FAKE_PSQL_STDERR", "FAKE_PSQL_EXIT",
                "FAKE_PSQL_SLEEP", "FAKE_PSQL_SIGNAL", "FAKE_PSQL_ABORT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("FAKE_PSQL_LOG", str(tmp_path / "psql_call.json"))
    monkeypatch.setenv("PSQL", str(wrapper))
    return wrapper


@pytest.fixture()
def psql_call(tmp_path: Path) -> Callable[[], dict]:
    """Read back what the fake psql was called with."""
    import json

    def read() -> dict:
        return json.loads((tmp_path / "psql_call.json").read_text())

    return read


@pytest.fixture()
def psql_config(fake_psql: Path) -> HarnessConfig:
    return HarnessConfig(timeout_default=1, psql=str(fake_psql))


# ---------------------------------------------------------------------------
# Diagnostics and timing
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def diagnostics() -> Generator[io.StringIO, None, None]:
    """Capture harness diagnostics; the buffer holds everything printed."""
    buffer = io.StringIO()
    set_diagnostics(Diagnostics(console=Console(file=buffer, no_color=True, width=200)))
    yield buffer
    set_diagnostics(None)


@pytest.fixture()
def sleeps(monkeypatch: pytest.MonkeyPatch) -> List[float]:
    """Replace time.sleep with a recorder so polling tests run instantly."""
    calls: List[float] = []
    monkeypatch.setattr("time.sleep", calls.append)
    return calls


@pytest.fixture()
def fast_config() -> HarnessConfig:
    """Config with a 1 second global timeout, i.e. a budget of 10 polls."""
    return HarnessConfig(timeout_default=1)


# ---------------------------------------------------------------------------
# Live server
# ---------------------------------------------------------------------------

LIVE = os.environ.get("PGHARNESS_LIVE", "") not in ("", "0")


def pytest_collection_modifyitems(config: pytest.Config, items: List[pytest.Item]) -> None:
    if LIVE:
        return
    skip_live = pytest.mark.skip(reason="needs a server; set PGHARNESS_LIVE=1")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)
