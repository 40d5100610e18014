"""The root command: finds a deployer binary in PATH and hands over to it."""

from __future__ import annotations

import os
import shutil
import sys
from typing import Sequence

from .process import ProcessError, exec_process

BINARY_NAME = "kubetest2"

# The build's source revision, shown by --version and passed to deployers.
GIT_TAG = ""

_USAGE_LONG = f"""{BINARY_NAME} is a tool for kubernetes end to end testing.

It orchestrates creating clusters, building kubernetes, deleting clusters, running tests, etc.

{BINARY_NAME} should be called with a deployer like: '{BINARY_NAME} kind --help'"""

_TRUE_VALUES = {"1", "t", "T", "true", "TRUE", "True"}
_BOOL_VALUES = _TRUE_VALUES | {"0", "f", "F", "false", "FALSE", "False"}


def _look_path(binary: str, name: str, kind: str) -> str:
    path = shutil.which(binary)
    if path is None:
        raise FileNotFoundError(
            f'"{binary}" not found in PATH, could not locate "{name}" {kind}'
        )
    return path


def find_deployer(name: str) -> str:
    """Return the path of the binary implementing the named deployer."""
    return _look_path(f"{BINARY_NAME}-{name}", name, "deployer")


def find_tester(name: str) -> str:
    """Return the path of the binary implementing the named tester."""
    return _look_path(f"{BINARY_NAME}-tester-{name}", name, "tester")


def _search_path_dirs() -> list[str]:
    # An empty PATH element means the current directory, as in a shell.
    return [d or "." for d in os.environ.get("PATH", "").split(os.pathsep)]


def _scan(prefix: str, exclude_prefix: str | None, find) -> dict[str, str]:
    found: dict[str, str] = {}
    for directory in _search_path_dirs():
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError:
            continue
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                continue
            file_name = entry.name
            if not file_name.startswith(prefix):
                continue
            if exclude_prefix is not None and file_name.startswith(exclude_prefix):
                continue
            name = file_name[len(prefix):]
            if name in found:
                continue
            try:
                found[name] = find(name)
            except FileNotFoundError:
                continue
    return found


def find_deployers() -> dict[str, str]:
    """Map every deployer found in PATH to the first binary implementing it."""
    return _scan(f"{BINARY_NAME}-", f"{BINARY_NAME}-tester-", find_deployer)


def find_testers() -> dict[str, str]:
    """Map every tester found in PATH to the first binary implementing it."""
    return _scan(f"{BINARY_NAME}-tester-", None, find_tester)


def usage_text() -> str:
    """Return the usage text, listing the deployers and testers in PATH."""
    lines = ["Usage:", f"  {BINARY_NAME} [deployer] [flags]", "", "Detected Deployers:"]
    lines += [f"  {name}" for name in sorted(find_deployers())]
    lines += ["", "Detected Testers:"]
    lines += [f"  {name}" for name in sorted(find_testers())]
    lines += ["", f"For more help, run {BINARY_NAME} [deployer] --help"]
    return "\n".join(lines) + "\n"


def _help_text() -> str:
    return f"{_USAGE_LONG}\n\n{usage_text()}"


def _flag_is_set(arg: str, long: str, short: str) -> bool:
    for form in (f"--{long}", f"-{short}"):
        if arg == form:
            return True
        if arg.startswith(form + "="):
            value = arg[len(form) + 1:]
            return value in _BOOL_VALUES and value in _TRUE_VALUES
    return False


def run(argv: Sequence[str]) -> None:
    """Run the root command with ``argv`` (without the program name).

    Help and version requests are answered directly; otherwise the named
    deployer is started with the remaining arguments.
    """
    args = list(argv)
    if not args:
        sys.stderr.write(_help_text())
        return

    if len(args) == 1:
        if _flag_is_set(args[0], "help", "h"):
            sys.stderr.write(_help_text())
            return
        if _flag_is_set(args[0], "version", "v"):
            sys.stdout.write(f"{BINARY_NAME} version {GIT_TAG}\n")
            return

    deployer_name = args[0]
    try:
        deployer = find_deployer(deployer_name)
    except FileNotFoundError:
        sys.stderr.write(
            f'Error: could not find {BINARY_NAME} deployer "{deployer_name}"\n\n'
        )
        sys.stderr.write(usage_text())
        raise

    env = [f"{key}={value}" for key, value in os.environ.items()]
    env.append(f"KUBETEST2_VERSION={BINARY_NAME} version {GIT_TAG}")
    exec_process(deployer, args[1:], env)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the root command; returns the process exit code."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        run(argv)
    except (OSError, ProcessError):
        return 1
    return 0