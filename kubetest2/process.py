"""Running a child process as if it replaced the current one.

The child inherits the standard streams and receives the signals sent to
this process until it exits.
"""

from __future__ import annotations

import signal
import subprocess
import sys
import threading
from contextlib import contextmanager
from typing import Iterator, Sequence

from .command import _env_mapping, _exit_message, _pump, _Sink, _start_worker
from .junit import JUnitError

_FORWARDED_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT", "SIGUSR1", "SIGUSR2", "SIGWINCH")
    if hasattr(signal, name)
)


class ProcessError(Exception):
    """A child process could not be started or exited unsuccessfully."""

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class ExecJUnitError(JUnitError):
    """A child process failed; ``system_out`` holds everything it printed."""

    def __init__(
        self, message: str, system_out: str = "", returncode: int | None = None
    ) -> None:
        super().__init__(message, system_out)
        self.returncode = returncode


@contextmanager
def _forward_signals(proc: subprocess.Popen) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def forward(signum: int, _frame: object) -> None:
        try:
            proc.send_signal(signum)
        except ProcessLookupError:
            pass

    previous = {}
    for sig in _FORWARDED_SIGNALS:
        try:
            previous[sig] = signal.signal(sig, forward)
        except (OSError, ValueError):
            continue
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _flush_standard_streams() -> None:
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (AttributeError, OSError, ValueError):
            pass


def exec_process(argv0: str, args: Sequence[str], env: Sequence[str] | None) -> None:
    """Run ``argv0`` with ``args`` and ``key=value`` ``env``, inheriting stdio.

    ``env`` of None inherits the current environment.
    """
    _flush_standard_streams()
    try:
        proc = subprocess.Popen([argv0, *args], env=_env_mapping(env))
    except OSError as err:
        raise ProcessError(f"exec: {argv0!r}: {err.strerror or err}") from err
    with _forward_signals(proc):
        returncode = proc.wait()
    if returncode != 0:
        raise ProcessError(_exit_message(returncode), returncode)


class _Tee:
    def __init__(self, captured: bytearray, stream: object, lock: threading.RLock) -> None:
        self._captured = captured
        self._sink = _Sink(stream, lock)
        self._lock = lock

    def write(self, chunk: bytes) -> None:
        with self._lock:
            self._captured.extend(chunk)
            self._sink.write(chunk)

    def close(self) -> None:
        self._sink.close()


def exec_junit(
    argv0: str,
    args: Sequence[str],
    env: Sequence[str] | None,
    timeout: float | None = None,
) -> None:
    """Like ``exec_process``, but also capture the output for a JUnit report.

    The output is still passed through to this process's stdout and stderr.
    A failure raises ``ExecJUnitError`` carrying the captured output; after
    ``timeout`` seconds the child is killed.
    """
    _flush_standard_streams()
    try:
        proc = subprocess.Popen(
            [argv0, *args],
            env=_env_mapping(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as err:
        raise ExecJUnitError(f"exec: {argv0!r}: {err.strerror or err}") from err

    lock = threading.RLock()
    captured = bytearray()
    pumps = [
        _start_worker(_pump, proc.stdout, _Tee(captured, sys.stdout, lock)),
        _start_worker(_pump, proc.stderr, _Tee(captured, sys.stderr, lock)),
    ]
    with _forward_signals(proc):
        try:
            returncode = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            returncode = proc.wait()
        finally:
            for pump in pumps:
                pump.join()
    if returncode != 0:
        raise ExecJUnitError(
            _exit_message(returncode),
            bytes(captured).decode("utf-8", errors="replace"),
            returncode,
        )