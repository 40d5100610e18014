"""JUnit report of the runner's top level steps."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, TextIO, TypeVar

T = TypeVar("T")

_XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'
_INDENT = "    "

_ESCAPES = {
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    "\t": "&#x9;",
    "\n": "&#xA;",
    "\r": "&#xD;",
}
_INVALID_XML = re.compile(
    "[^\t\n\r\u0020-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]"
)


class JUnitError(Exception):
    """An error carrying command output for the JUnit report."""

    def __init__(self, message: str, system_out: str = "") -> None:
        super().__init__(message)
        self.system_out = system_out


def _escape(text: str) -> str:
    text = _INVALID_XML.sub("\ufffd", text)
    return "".join(_ESCAPES.get(ch, ch) for ch in text)


def _format_float(value: float) -> str:
    """Shortest round-trip formatting with a six-digit exponent threshold."""
    value = float(value)
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    point = len(digits) + exponent
    exp = point - 1
    if exp < -4 or exp >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        exp_sign = "-" if exp < 0 else "+"
        return f"{sign}{mantissa}e{exp_sign}{abs(exp):02d}"
    if point <= 0:
        return f"{sign}0.{'0' * -point}{digits}"
    if point >= len(digits):
        return f"{sign}{digits}{'0' * (point - len(digits))}"
    return f"{sign}{digits[:point]}.{digits[point:]}"


@dataclass
class JUnitCase:
    """The result of one step; a row in the report."""

    name: str
    class_name: str
    time: float = 0.0
    failure: str = ""
    skipped: str = ""
    system_out: str = ""

    def _render(self, indent: str) -> str:
        opening = (
            f'<testcase name="{_escape(self.name)}" '
            f'classname="{_escape(self.class_name)}" '
            f'time="{_format_float(self.time)}">'
        )
        children = [
            (tag, value)
            for tag, value in (
                ("failure", self.failure),
                ("skipped", self.skipped),
                ("system-out", self.system_out),
            )
            if value
        ]
        if not children:
            return opening + "</testcase>"
        inner = "".join(
            f"\n{indent}{_INDENT}<{tag}>{_escape(value)}</{tag}>"
            for tag, value in children
        )
        return f"{opening}{inner}\n{indent}</testcase>"


@dataclass
class JUnitSuite:
    """A named collection of test cases with summary counts."""

    name: str
    failures: int = 0
    tests: int = 0
    time: float = 0.0
    cases: list[JUnitCase] = field(default_factory=list)

    def add_test_case(self, case: JUnitCase) -> None:
        """Append ``case`` and update the counts."""
        self.tests += 1
        if case.failure:
            self.failures += 1
        self.cases.append(case)

    def to_xml(self) -> str:
        """Render the suite as an XML document."""
        opening = (
            f'<testsuite name="{_escape(self.name)}" failures="{self.failures}" '
            f'tests="{self.tests}" time="{_format_float(self.time)}">'
        )
        if not self.cases:
            return f"{_XML_HEADER}{opening}</testsuite>"
        body = "".join(f"\n{_INDENT}{case._render(_INDENT)}" for case in self.cases)
        return f"{_XML_HEADER}{opening}{body}\n</testsuite>"

    def write(self, out: TextIO) -> None:
        """Write the XML document to ``out``."""
        out.write(self.to_xml())


class Writer:
    """Records timed steps and writes them out as a JUnit report."""

    def __init__(
        self,
        suite_name: str,
        runner_out: TextIO,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.suite = JUnitSuite(name=suite_name)
        self._runner_out = runner_out
        self._clock = clock or time.monotonic
        self._start = self._clock()

    def wrap_step(self, name: str, do_step: Callable[[], T]) -> T:
        """Run ``do_step``, record its timing and outcome, and pass it through.

        An exception raised by the step is recorded as a failure and raised
        again; a ``JUnitError`` also has its output recorded.
        """
        start = self._clock()
        case = JUnitCase(name=name, class_name=self.suite.name)
        try:
            result = do_step()
        except Exception as err:
            case.time = float(self._clock() - start)
            case.failure = str(err)
            if isinstance(err, JUnitError):
                case.system_out = err.system_out
            self.suite.add_test_case(case)
            raise
        case.time = float(self._clock() - start)
        self.suite.add_test_case(case)
        return result

    def finish(self) -> None:
        """Set the total time and write the report."""
        self.suite.time = float(self._clock() - self._start)
        self.suite.write(self._runner_out)