"""Running external commands with configurable input, output and environment.

Commands have no default time limit; pass ``timeout`` to bound how long a
command may run before it is killed.
"""

from __future__ import annotations

import codecs
import io
import logging
import shlex
import signal
import subprocess
import threading
from typing import IO, Any, Callable, Iterable

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


class CommandError(Exception):
    """A command could not be started, exited unsuccessfully or timed out.

    ``output`` holds whatever stdout was captured by the helper that ran it.
    """

    def __init__(
        self, message: str, returncode: int | None = None, output: bytes = b""
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


def _env_mapping(entries: Iterable[str] | None) -> dict[str, str] | None:
    """Turn ``key=value`` entries into a mapping; later keys win.

    ``None`` means the child inherits the current environment.
    """
    if entries is None:
        return None
    env: dict[str, str] = {}
    for entry in entries:
        key, sep, value = entry.partition("=")
        if sep and key:
            env[key] = value
    return env


def _exit_message(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f"signal: {name}"
    return f"exit status {returncode}"


def _start_worker(target: Callable[..., None], *args: Any) -> threading.Thread:
    worker = threading.Thread(target=target, args=args, daemon=True)
    worker.start()
    return worker


def _is_binary(stream: Any) -> bool:
    if isinstance(stream, (io.RawIOBase, io.BufferedIOBase)):
        return True
    return "b" in str(getattr(stream, "mode", ""))


def _real_fileno(stream: Any) -> int | None:
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


class _Sink:
    """Writes raw chunks to a text or binary stream under a shared lock."""

    def __init__(self, stream: Any, lock: threading.RLock) -> None:
        self._stream = stream
        self._lock = lock
        self._decoder = (
            None
            if _is_binary(stream)
            else codecs.getincrementaldecoder("utf-8")("replace")
        )

    def _emit(self, data: bytes | str) -> None:
        if data:
            self._stream.write(data)
            flush = getattr(self._stream, "flush", None)
            if flush is not None:
                flush()

    def write(self, chunk: bytes) -> None:
        with self._lock:
            if self._decoder is None:
                self._emit(chunk)
            else:
                self._emit(self._decoder.decode(chunk))

    def close(self) -> None:
        if self._decoder is not None:
            with self._lock:
                self._emit(self._decoder.decode(b"", final=True))


def _pump(pipe: IO[bytes], sink: Any) -> None:
    with pipe:
        for chunk in iter(lambda: pipe.read1(_CHUNK), b""):  # type: ignore[attr-defined]
            sink.write(chunk)
    sink.close()


def _feed(pipe: IO[bytes], source: Any) -> None:
    try:
        for chunk in iter(lambda: source.read(_CHUNK), ""):
            if not chunk:
                break
            pipe.write(chunk.encode() if isinstance(chunk, str) else chunk)
    except BrokenPipeError:
        pass
    finally:
        try:
            pipe.close()
        except OSError:
            pass


def _input_target(stream: Any) -> tuple[Any, Any]:
    if stream is None or stream == subprocess.DEVNULL:
        return subprocess.DEVNULL, None
    fd = _real_fileno(stream)
    if fd is not None:
        return fd, None
    return subprocess.PIPE, stream


def _output_target(stream: Any, lock: threading.RLock) -> tuple[Any, _Sink | None]:
    if stream is None or stream == subprocess.DEVNULL:
        return subprocess.DEVNULL, None
    fd = _real_fileno(stream)
    if fd is not None:
        flush = getattr(stream, "flush", None)
        if flush is not None:
            flush()
        return fd, None
    return subprocess.PIPE, _Sink(stream, lock)


class LocalCmd:
    """A command run as a local child process.

    Unset input and output streams are connected to the null device, and an
    unset environment is inherited from the current process.
    """

    def __init__(self, name: str, *args: str, timeout: float | None = None) -> None:
        self.name = name
        self.args = list(args)
        self.timeout = timeout
        self._env: dict[str, str] | None = None
        self._stdin: Any = None
        self._stdout: Any = None
        self._stderr: Any = None
        self._dir: str | None = None

    def set_env(self, *args: str) -> "LocalCmd":
        """Set the environment from ``key=value`` entries; none means inherit."""
        self._env = _env_mapping(args) if args else None
        return self

    def set_stdin(self, stream: Any) -> "LocalCmd":
        """Read the command's input from ``stream``."""
        self._stdin = stream
        return self

    def set_stdout(self, stream: Any) -> "LocalCmd":
        """Write the command's standard output to ``stream``."""
        self._stdout = stream
        return self

    def set_stderr(self, stream: Any) -> "LocalCmd":
        """Write the command's standard error to ``stream``."""
        self._stderr = stream
        return self

    def set_dir(self, directory: str) -> "LocalCmd":
        """Run the command in ``directory``."""
        self._dir = directory or None
        return self

    def run(self) -> None:
        """Run the command to completion, raising CommandError on failure."""
        lock = threading.RLock()
        stdin_arg, feed_source = _input_target(self._stdin)
        stdout_arg, stdout_sink = _output_target(self._stdout, lock)
        stderr_arg, stderr_sink = _output_target(self._stderr, lock)
        try:
            proc = subprocess.Popen(
                [self.name, *self.args],
                stdin=stdin_arg,
                stdout=stdout_arg,
                stderr=stderr_arg,
                env=self._env,
                cwd=self._dir,
            )
        except OSError as err:
            raise CommandError(f"exec: {self.name!r}: {err.strerror or err}") from err

        workers = []
        if feed_source is not None:
            workers.append(_start_worker(_feed, proc.stdin, feed_source))
        if stdout_sink is not None:
            workers.append(_start_worker(_pump, proc.stdout, stdout_sink))
        if stderr_sink is not None:
            workers.append(_start_worker(_pump, proc.stderr, stderr_sink))

        try:
            returncode = proc.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            returncode = proc.wait()
        finally:
            for worker in workers:
                worker.join()
        if returncode != 0:
            raise CommandError(_exit_message(returncode), returncode)


class LocalCmder:
    """Creates commands that run as local child processes."""

    def command(self, name: str, *args: str, timeout: float | None = None) -> LocalCmd:
        """Return a new command for ``name`` with ``args``."""
        logger.debug("⚙️ %s %s", name, " ".join(args))
        return LocalCmd(name, *args, timeout=timeout)


_DEFAULT_CMDER = LocalCmder()


def command(name: str, *args: str, timeout: float | None = None) -> LocalCmd:
    """Return a new local command for ``name`` with ``args``."""
    return _DEFAULT_CMDER.command(name, *args, timeout=timeout)


def raw_command(raw: str, timeout: float | None = None) -> LocalCmd:
    """Split ``raw`` shell-style into a command; unsplittable text is used whole."""
    try:
        parts = shlex.split(raw)
    except ValueError:
        parts = []
    if not parts:
        return _DEFAULT_CMDER.command(raw, timeout=timeout)
    return _DEFAULT_CMDER.command(parts[0], *parts[1:], timeout=timeout)


def _split_lines(data: bytes) -> list[str]:
    text = data.decode("utf-8", errors="replace")
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def _run_capturing(cmd: LocalCmd, combined: bool) -> bytes:
    buffer = io.BytesIO()
    cmd.set_stdout(buffer)
    if combined:
        cmd.set_stderr(buffer)
    try:
        cmd.run()
    except CommandError as err:
        err.output = buffer.getvalue()
        raise
    return buffer.getvalue()


def output(cmd: LocalCmd) -> bytes:
    """Run ``cmd`` and return its standard output."""
    return _run_capturing(cmd, combined=False)


def output_lines(cmd: LocalCmd) -> list[str]:
    """Run ``cmd`` and return its standard output split into lines."""
    return _split_lines(_run_capturing(cmd, combined=False))


def combined_output_lines(cmd: LocalCmd) -> list[str]:
    """Run ``cmd`` and return its standard output and error split into lines."""
    return _split_lines(_run_capturing(cmd, combined=True))


def set_output(cmd: LocalCmd, stdout: Any, stderr: Any) -> None:
    """Send the command's output to the given streams."""
    cmd.set_stdout(stdout)
    cmd.set_stderr(stderr)


def inherit_output(cmd: LocalCmd) -> None:
    """Send the command's output to this process's stdout and stderr."""
    import sys

    cmd.set_stderr(sys.stderr)
    cmd.set_stdout(sys.stdout)


def no_output(cmd: LocalCmd) -> None:
    """Discard all output of the command."""
    cmd.set_stdout(subprocess.DEVNULL)
    cmd.set_stderr(subprocess.DEVNULL)