"""
Running SQL through the psql client.

psql is started in unaligned, tuples-only, quiet mode with .psqlrc
disabled, reading the SQL from standard input, so its standard output is
exactly what the in-process session renders for the same query.
"""

import os
import subprocess
import sys
from typing import Dict, List, Optional, TextIO

from .errors import (
    PsqlConnectionError,
    PsqlError,
    PsqlKilled,
    PsqlSQLError,
    PsqlTimeout,
)
from .models import (
    Completed,
    HarnessConfig,
    Killed,
    ProcessOutcome,
    PsqlOptions,
    PsqlResult,
    TimedOut,
)


# psql exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONNECTION = 2
EXIT_SQL = 3


def decode_wait_status(status: int) -> ProcessOutcome:
    """
    Decode a raw POSIX wait status, as returned by os.waitpid().

    The low seven bits hold the signal that killed the process and bit 7
    says whether it dumped core; if there was no signal the exit code is
    in the next byte.
    """
    signal = status & 127
    if signal:
        return Killed(signal=signal, core_dumped=bool(status & 128))
    return Completed(exit_code=(status >> 8) & 0xFF)


def decode_returncode(returncode: int) -> ProcessOutcome:
    """
    Decode a subprocess return code.

    subprocess reports death by signal N as -N and does not expose the
    core-dump bit, so core_dumped is always False here.
    """
    if returncode < 0:
        return Killed(signal=-returncode)
    return Completed(exit_code=returncode)


def _chomp(text: str) -> str:
    if text.endswith("\n"):
        return text[:-1]
    return text


def _reset(buffer: TextIO) -> None:
    # pipes and terminals can only be appended to
    if not buffer.seekable():
        return
    buffer.seek(0)
    buffer.truncate()


class _PsqlProcess(subprocess.Popen):
    """
    Popen that keeps the raw wait status of the child.

    subprocess folds the status into returncode and drops the core-dump
    bit on the way. On POSIX every reap goes through _handle_exitstatus,
    so the status is recorded there; elsewhere wait_status stays None.
    """

    wait_status: Optional[int] = None

    def _handle_exitstatus(self, sts, *args, **kwargs):
        self.wait_status = sts
        super()._handle_exitstatus(sts, *args, **kwargs)


def decode_outcome(proc: subprocess.Popen) -> ProcessOutcome:
    """Outcome of a finished process, from its raw wait status when known."""
    wait_status = getattr(proc, "wait_status", None)
    if wait_status is not None:
        return decode_wait_status(wait_status)
    return decode_returncode(proc.returncode)


def _library_path_var() -> str:
    if sys.platform == "win32":
        return "PATH"
    if sys.platform == "darwin":
        return "DYLD_LIBRARY_PATH"
    return "LD_LIBRARY_PATH"


def child_environment(libdir: Optional[str]) -> Optional[Dict[str, str]]:
    """Environment for psql with libdir first on the library search path."""
    if not libdir:
        return None
    env = dict(os.environ)
    var = _library_path_var()
    current = env.get(var)
    env[var] = libdir if not current else libdir + os.pathsep + current
    return env


class PsqlRunner:
    """
    Runs psql against a server and interprets how it exited.

    Handles:
    - Building the psql command line
    - Feeding SQL on stdin and capturing stdout/stderr
    - Timeout enforcement (the process is killed)
    - Mapping signals and exit codes to exceptions
    """

    def __init__(self, config: Optional[HarnessConfig] = None):
        self.config = config or HarnessConfig.from_env()

    def build_command(self, connstr: str, options: PsqlOptions) -> List[str]:
        conninfo = options.connstr if options.connstr is not None else connstr
        if options.replication is not None:
            conninfo += f" replication={options.replication}"

        command = [self.config.psql, "-XAtq", "-d", conninfo, "-f", "-"]
        if options.on_error_stop:
            command += ["-v", "ON_ERROR_STOP=1"]
        command += list(options.extra_params)
        return command

    def run(
        self,
        connstr: str,
        sql: str,
        options: Optional[PsqlOptions] = None,
        libdir: Optional[str] = None,
    ) -> PsqlResult:
        """
        Run sql with psql.

        Returns psql's result, including a nonzero exit code, unless
        on_error_die is set. Death by signal always raises PsqlKilled. A
        timeout raises PsqlTimeout unless options.timed_out is supplied, in
        which case the flag is set and returncode is None.
        """
        if options is None:
            options = PsqlOptions()
        command = self.build_command(connstr, options)
        cmdline = " ".join(command)

        if options.timed_out is not None:
            options.timed_out.value = False
        # otherwise output from an earlier call would linger
        if options.stdout is not None:
            _reset(options.stdout)
        if options.stderr is not None:
            _reset(options.stderr)

        try:
            proc = _PsqlProcess(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                env=child_environment(libdir),
            )
        except OSError as e:
            raise PsqlError(f"could not run psql: {e}", command) from e

        outcome: ProcessOutcome
        try:
            stdout, stderr = proc.communicate(sql, timeout=options.timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            stdout, stderr = proc.communicate()
            outcome = TimedOut()
        else:
            outcome = decode_outcome(proc)

        stdout = _chomp(stdout or "")
        stderr = _chomp(stderr or "")
        if options.stdout is not None:
            options.stdout.write(stdout)
        if options.stderr is not None:
            options.stderr.write(stderr)

        if isinstance(outcome, TimedOut):
            if options.timed_out is not None:
                options.timed_out.value = True
                return PsqlResult(None, stdout, stderr, outcome)
            raise PsqlTimeout(
                f"psql timed out: stderr: '{stderr}'\nwhile running '{cmdline}'",
                command,
                stderr,
            )

        if isinstance(outcome, Killed):
            core = " (core dumped)" if outcome.core_dumped else ""
            raise PsqlKilled(
                f"psql exited with signal {outcome.signal}{core}: "
                f"'{stderr}' while running '{cmdline}'",
                command,
                stderr,
                signal=outcome.signal,
                core_dumped=outcome.core_dumped,
            )

        returncode = outcome.exit_code
        if returncode != EXIT_OK and options.on_error_die:
            raise self._exit_error(returncode, command, stderr, sql)

        return PsqlResult(returncode, stdout, stderr, outcome)

    def _exit_error(
        self,
        returncode: int,
        command: List[str],
        stderr: str,
        sql: str,
    ) -> PsqlError:
        cmdline = " ".join(command)
        if returncode == EXIT_ERROR:
            return PsqlError(
                f"psql error: stderr: '{stderr}'\nwhile running '{cmdline}'",
                command, stderr, returncode,
            )
        if returncode == EXIT_CONNECTION:
            return PsqlConnectionError(
                f"connection error: '{stderr}'\nwhile running '{cmdline}'",
                command, stderr, returncode,
            )
        if returncode == EXIT_SQL:
            return PsqlSQLError(
                f"error running SQL: '{stderr}'\n"
                f"while running '{cmdline}' with sql '{sql}'",
                command, stderr, returncode, sql=sql,
            )
        return PsqlError(
            f"psql returns {returncode}: '{stderr}'\nwhile running '{cmdline}'",
            command, stderr, returncode,
        )


def run_psql(
    connstr: str,
    sql: str,
    options: Optional[PsqlOptions] = None,
    config: Optional[HarnessConfig] = None,
    libdir: Optional[str] = None,
) -> PsqlResult:
    """
    Convenience function to run psql once.

    Args:
        connstr: Connection string for the target database
        sql: SQL fed to psql on standard input
        options: Invocation options (defaults: ON_ERROR_STOP, no timeout)
        config: Harness configuration (read from the environment if omitted)
        libdir: Client library directory to put on the library search path

    Returns:
        PsqlResult with the exit code and captured output
    """
    return PsqlRunner(config).run(connstr, sql, options, libdir)
