"""A tester that runs an arbitrary command and reports its output as JUnit."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Sequence

from ..process import exec_junit
from .version_metadata import write_version_to_metadata

# The build's source revision, recorded as the tester version.
GIT_TAG = ""

USAGE = """kubetest2 --test=exec --  [TestCommand] [TestArgs]
  TestCommand: the command to invoke for testing
  TestArgs:    arguments passed to test command
"""

_SHELL_SPECIAL = set("*#$@!?-0123456789")
_TRUE_VALUES = {"1", "t", "T", "true", "TRUE", "True"}


def _is_alnum(ch: str) -> bool:
    return ch == "_" or ("0" <= ch <= "9") or ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _shell_name(text: str) -> tuple[str, int]:
    """Return the variable name at the start of ``text`` and how much to consume."""
    if text[0] == "{":
        if len(text) > 2 and text[1] in _SHELL_SPECIAL and text[2] == "}":
            return text[1], 3
        closing = text.find("}", 1)
        if closing == 1:
            return "", 2
        if closing == -1:
            return "", 1
        return text[1:closing], closing + 1
    if text[0] in _SHELL_SPECIAL:
        return text[0], 1
    width = 0
    while width < len(text) and _is_alnum(text[width]):
        width += 1
    return text[:width], width


def _expand_variables(text: str) -> str:
    """Replace $var and ${var} with their environment values; unset means empty."""
    pieces: list[str] = []
    start = 0
    pos = 0
    while pos < len(text):
        if text[pos] == "$" and pos + 1 < len(text):
            pieces.append(text[start:pos])
            name, width = _shell_name(text[pos + 1:])
            if name:
                pieces.append(os.environ.get(name, ""))
            elif width == 0:
                # a dollar not followed by a name is kept as it is
                pieces.append("$")
            pos += width
            start = pos + 1
        pos += 1
    pieces.append(text[start:])
    return "".join(pieces)


def expand_env(args: Sequence[str]) -> list[str]:
    """Expand environment variables in each argument.

    An argument holding a literal ``\\$`` only has that sequence turned into
    ``$``; no variables are expanded in it.
    """
    return [
        arg.replace("\\$", "$") if "\\$" in arg else _expand_variables(arg)
        for arg in args
    ]


def _is_help(arg: str) -> bool:
    for form in ("--help", "-h"):
        if arg == form:
            return True
        if arg.startswith(form + "="):
            return arg[len(form) + 1:] in _TRUE_VALUES
    return False


@dataclass
class ExecTester:
    """Runs the command given after ``--`` as the test."""

    argv: list[str] = field(default_factory=list)

    def execute(self, argv: Sequence[str] | None = None) -> None:
        """Handle help, record the version and run the command in ``argv``."""
        args = list(sys.argv[1:] if argv is None else argv)
        if not args or _is_help(args[0]):
            sys.stdout.write(USAGE)
            return
        self.argv = args
        write_version_to_metadata(GIT_TAG)
        self.test()

    def test(self) -> None:
        """Run the command, raising ExecJUnitError if it fails."""
        expanded = expand_env(self.argv)
        if not expanded:
            raise ValueError("no test command given")
        env = [f"{key}={value}" for key, value in os.environ.items()]
        exec_junit(expanded[0], expanded[1:], env)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the exec tester; returns the process exit code."""
    try:
        ExecTester().execute(argv)
    except Exception as err:
        sys.stderr.write(f"failed to run exec tester: {err}\n")
        return 255
    return 0