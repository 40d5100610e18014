import argparse
import io
import json
import os
import tarfile
from datetime import timedelta

import pytest

from kubetest2 import artifacts
from kubetest2.testers.ginkgo import GinkgoTester, main, sha256sum


def _write_script(path, body):
    path.write_text("#!/bin/sh\n" + body)
    os.chmod(path, 0o755)
    return path


def _fake_ginkgo(path, version_line):
    return _write_script(
        path,
        f'if [ "$1" = "version" ]; then echo "{version_line}"; exit 0; fi\n'
        "printf '%s\\n' \"$@\" > \"$ARGS_FILE\"\n",
    )


@pytest.fixture
def env(tmp_path, monkeypatch):
    artifacts_dir = tmp_path / "artifacts"
    artifacts_dir.mkdir()
    run_dir = tmp_path / "rundir"
    run_dir.mkdir()
    monkeypatch.setenv("ARTIFACTS", str(artifacts_dir))
    monkeypatch.setenv("KUBETEST2_RUN_DIR", str(run_dir))
    monkeypatch.setenv("ARGS_FILE", str(tmp_path / "args.txt"))
    artifacts.apply_flags(argparse.Namespace())
    return tmp_path


def _built_binaries(run_dir, version_line="Ginkgo Version 2.1.4"):
    _fake_ginkgo(run_dir / "ginkgo", version_line)
    _write_script(run_dir / "e2e.test", "exit 0\n")
    _write_script(run_dir / "kubectl", "exit 0\n")


def test_sha256sum_of_empty_file(tmp_path):
    path = tmp_path / "empty"
    path.write_bytes(b"")
    assert sha256sum(str(path)) == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )


def test_sha256sum_depends_on_content(tmp_path):
    first = tmp_path / "a"
    second = tmp_path / "b"
    third = tmp_path / "c"
    first.write_bytes(b"same")
    second.write_bytes(b"same")
    third.write_bytes(b"other")
    assert sha256sum(str(first)) == sha256sum(str(second))
    assert sha256sum(str(first)) != sha256sum(str(third))
    assert len(sha256sum(str(third))) == 64


@pytest.mark.parametrize(
    "line, expected",
    [
        ("Ginkgo Version 2.1.4", "2"),
        ("Ginkgo Version 1.14.0", "1"),
        ("Ginkgo 2.1.4", ""),
        ("Ginkgo Version 2.1", ""),
    ],
)
def test_ginkgo_major_version(tmp_path, line, expected):
    tester = GinkgoTester()
    tester.ginkgo_path = str(_fake_ginkgo(tmp_path / "ginkgo", line))
    assert tester.ginkgo_major_version() == expected


def test_ginkgo_major_version_missing_binary(tmp_path):
    tester = GinkgoTester()
    tester.ginkgo_path = str(tmp_path / "missing")
    assert tester.ginkgo_major_version() == ""


def test_test_runs_ginkgo_with_built_binaries(env, monkeypatch):
    run_dir = env / "rundir"
    _built_binaries(run_dir)
    monkeypatch.chdir(env)
    monkeypatch.setenv("KUBECONFIG", "kc")
    expected_kubeconfig = os.path.join(os.getcwd(), "kc")

    tester = GinkgoTester(
        use_built_binaries=True,
        ginkgo_args="--v",
        test_args="--provider=skeleton 'a b'",
    )
    tester.set_run_dir(str(run_dir))
    tester.test()

    lines = (env / "args.txt").read_text().splitlines()
    assert lines == [
        "--v",
        "--nodes=1",
        str(run_dir / "e2e.test"),
        "--",
        f"--kubeconfig={expected_kubeconfig}",
        f"--kubectl-path={run_dir / 'kubectl'}",
        "--ginkgo.skip=",
        "--ginkgo.focus=",
        f"--report-dir={env / 'artifacts'}",
        "--ginkgo.timeout=24h0m0s",
        "--ginkgo.flake-attempts=1",
        "--provider=skeleton",
        "a b",
    ]
    metadata = json.loads((env / "artifacts" / "metadata.json").read_text())
    assert metadata == {"tester-version": ""}


def test_test_rejects_old_ginkgo(env, monkeypatch):
    run_dir = env / "rundir"
    _built_binaries(run_dir, "Ginkgo Version 1.14.0")
    monkeypatch.setenv("KUBECONFIG", str(env / "kc"))
    tester = GinkgoTester(use_built_binaries=True)
    tester.set_run_dir(str(run_dir))
    with pytest.raises(RuntimeError, match="unsupported ginkgo version: 1"):
        tester.test()
    assert not (env / "args.txt").exists()


def test_test_requires_built_binaries(env, monkeypatch):
    monkeypatch.setenv("KUBECONFIG", str(env / "kc"))
    tester = GinkgoTester(use_built_binaries=True)
    tester.set_run_dir(str(env / "rundir"))
    with pytest.raises(RuntimeError, match="failed to validate pre-built binary"):
        tester.test()


def test_execute_help_parses_flags(env, capsys):
    tester = GinkgoTester()
    tester.execute(
        [
            "--parallel=4",
            "--timeout=1h30m",
            "--env=A=1,B=2",
            "--env=C=3",
            "--flake-attempts",
            "3",
            "--use-built-binaries",
            "--help",
        ]
    )
    assert tester.parallel == 4
    assert tester.flake_attempts == 3
    assert tester.timeout == timedelta(hours=1, minutes=30)
    assert tester.env == ["A=1", "B=2", "C=3"]
    assert tester.use_built_binaries is True
    out = capsys.readouterr().out
    assert "--flake-attempts" in out
    assert "--use-built-binaries" in out
    assert not (env / "artifacts" / "metadata.json").exists()


def test_execute_unknown_flag(env):
    with pytest.raises(ValueError, match="unknown flag: --bogus"):
        GinkgoTester().execute(["--bogus"])


def test_execute_bad_duration(env):
    with pytest.raises(ValueError, match="failed to parse flags"):
        GinkgoTester().execute(["--timeout=forever"])


def test_main_reports_failure(env):
    assert main(["--bogus"]) == 255


def _make_tar(path, members):
    with tarfile.open(path, "w:gz") as archive:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))


@pytest.fixture
def fake_gsutil(env, monkeypatch):
    bin_dir = env / "bin"
    bin_dir.mkdir()
    _write_script(
        bin_dir / "gsutil",
        'case "$1" in\n'
        "  cat)\n"
        '    case "$2" in\n'
        "      *latest.txt) echo v1.2.3 ;;\n"
        "      *) exit 1 ;;\n"
        "    esac ;;\n"
        "  cp)\n"
        '    case "$2" in\n'
        '      *.tar.gz) cp "$FAKE_TAR" "$3" ;;\n'
        '      *kubectl) cp "$FAKE_KUBECTL" "$3" ;;\n'
        "      *) exit 1 ;;\n"
        "    esac ;;\n"
        "esac\n",
    )
    monkeypatch.setenv("PATH", str(bin_dir) + os.pathsep + os.environ.get("PATH", ""))
    cache = env / "cache"
    cache.mkdir()
    home = env / "home"
    (home / "Library" / "Caches").mkdir(parents=True)
    (home / ".cache").mkdir()
    monkeypatch.setenv("XDG_CACHE_HOME", str(cache))
    monkeypatch.setenv("HOME", str(home))
    kubectl = env / "kubectl-src"
    kubectl.write_bytes(b"kubectl")
    monkeypatch.setenv("FAKE_KUBECTL", str(kubectl))
    return env


def test_acquire_test_package(fake_gsutil, monkeypatch):
    env = fake_gsutil
    tar_path = env / "package.tar.gz"
    _make_tar(
        tar_path,
        {
            "kubernetes/test/bin/e2e.test": b"e2e",
            "kubernetes/test/bin/ginkgo": b"ginkgo",
        },
    )
    monkeypatch.setenv("FAKE_TAR", str(tar_path))

    tester = GinkgoTester()
    tester.acquire_test_package()

    run_dir = env / "rundir"
    assert tester.test_package_version == "v1.2.3"
    assert (run_dir / "e2e.test").read_bytes() == b"e2e"
    assert (run_dir / "ginkgo").read_bytes() == b"ginkgo"
    assert (run_dir / "kubectl").read_bytes() == b"kubectl"
    assert os.stat(run_dir / "e2e.test").st_mode & 0o777 == 0o700
    assert tester.kubectl_path == str(run_dir / "kubectl")
    assert tester.ginkgo_path == str(run_dir / "ginkgo")


def test_acquire_test_package_missing_member(fake_gsutil, monkeypatch):
    env = fake_gsutil
    tar_path = env / "package.tar.gz"
    _make_tar(tar_path, {"kubernetes/test/bin/e2e.test": b"e2e"})
    monkeypatch.setenv("FAKE_TAR", str(tar_path))

    tester = GinkgoTester(test_package_version="v1.2.3")
    with pytest.raises(RuntimeError, match="failed to find kubernetes/test/bin/ginkgo"):
        tester.acquire_test_package()