import io
import os
import sys

import pytest

from kubetest2.junit import JUnitError, Writer
from kubetest2.process import ExecJUnitError, ProcessError, exec_junit, exec_process


def py_args(script):
    return ["-c", script]


def test_exec_process_inherits_stdout(capfd):
    exec_process(sys.executable, py_args("print('from-child')"), None)
    assert "from-child" in capfd.readouterr().out


def test_exec_process_passes_environment(capfd):
    env = [f"PATH={os.environ.get('PATH', '')}", "KT2_VALUE=given"]
    exec_process(sys.executable, py_args("import os; print(os.environ['KT2_VALUE'])"), env)
    assert "given" in capfd.readouterr().out


def test_exec_process_failure_raises_with_returncode():
    with pytest.raises(ProcessError) as excinfo:
        exec_process(sys.executable, py_args("import sys; sys.exit(4)"), None)
    assert excinfo.value.returncode == 4


def test_exec_process_missing_binary():
    with pytest.raises(ProcessError):
        exec_process("kubetest2-definitely-missing-binary", [], None)


def test_exec_junit_tees_output(capsys):
    exec_junit(
        sys.executable,
        py_args("import sys; sys.stdout.write('seen'); sys.stderr.write('also')"),
        None,
    )
    captured = capsys.readouterr()
    assert captured.out == "seen"
    assert captured.err == "also"


def test_exec_junit_failure_captures_both_streams(capsys):
    script = (
        "import sys; sys.stdout.write('out-text'); sys.stdout.flush(); "
        "sys.stderr.write('err-text'); sys.exit(2)"
    )
    with pytest.raises(ExecJUnitError) as excinfo:
        exec_junit(sys.executable, py_args(script), None)
    err = excinfo.value
    assert isinstance(err, JUnitError)
    assert err.returncode == 2
    assert "out-text" in err.system_out
    assert "err-text" in err.system_out
    assert capsys.readouterr().out == "out-text"


def test_exec_junit_missing_binary_has_empty_output():
    with pytest.raises(ExecJUnitError) as excinfo:
        exec_junit("kubetest2-definitely-missing-binary", [], None)
    assert excinfo.value.system_out == ""


def test_exec_junit_timeout_kills():
    with pytest.raises(ExecJUnitError):
        exec_junit(sys.executable, py_args("import time; time.sleep(30)"), None, timeout=0.5)


def test_exec_junit_output_lands_in_report(capsys):
    ticks = iter(range(100))
    writer = Writer("kubetest2", io.StringIO(), clock=lambda: float(next(ticks)))
    script = "import sys; sys.stdout.write('boom'); sys.exit(1)"
    with pytest.raises(ExecJUnitError) as excinfo:
        writer.wrap_step("Test", lambda: exec_junit(sys.executable, py_args(script), None))
    case = writer.suite.cases[0]
    assert case.system_out == "boom"
    assert case.failure == str(excinfo.value)
    assert writer.suite.failures == 1