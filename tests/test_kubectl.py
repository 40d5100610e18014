import stat

import pytest

from kubetest2.command import CommandError
from kubetest2.testers.kubectl import api_server_url

_FAKE_KUBECTL = """#!/bin/sh
printf '%s\\n' "$*" >> "$KUBECTL_LOG"
case "$*" in
  *current-context*) printf '"my-context"' ;;
  *contexts*) printf '"my-cluster"' ;;
  *clusters*) printf 'https://127.0.0.1:6443' ;;
esac
"""


def _install(bindir, body):
    exe = bindir / "kubectl"
    exe.write_text(body)
    exe.chmod(exe.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


@pytest.fixture
def bindir(tmp_path, monkeypatch):
    d = tmp_path / "bin"
    d.mkdir()
    monkeypatch.setenv("PATH", str(d))
    monkeypatch.setenv("KUBECTL_LOG", str(tmp_path / "log.txt"))
    return d


def test_api_server_url(bindir, tmp_path):
    _install(bindir, _FAKE_KUBECTL)
    assert api_server_url() == "https://127.0.0.1:6443"
    calls = (tmp_path / "log.txt").read_text().splitlines()
    assert calls == [
        'config view -o jsonpath="{.current-context}"',
        'config view -o jsonpath="{.contexts[?(@.name == "my-context")].context.cluster}"',
        'config view -o jsonpath={.clusters[?(@.name == "my-cluster")].cluster.server}',
    ]


def test_context_failure_is_reported(bindir):
    _install(bindir, "#!/bin/sh\nexit 1\n")
    with pytest.raises(CommandError, match="^Could not get kube context"):
        api_server_url()


def test_cluster_name_failure_is_reported(bindir):
    _install(
        bindir,
        '#!/bin/sh\ncase "$*" in\n  *current-context*) printf x ;;\n  *) exit 2 ;;\nesac\n',
    )
    with pytest.raises(CommandError, match="^Could not get cluster name") as info:
        api_server_url()
    assert info.value.returncode == 2


def test_missing_kubectl(bindir):
    with pytest.raises(CommandError, match="kube context"):
        api_server_url()