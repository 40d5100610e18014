import pytest

from kubetest2.testers.clusterloader2 import ClusterLoader2Tester, main


def test_defaults_follow_environment(monkeypatch):
    monkeypatch.setenv("KUBECONFIG", "/tmp/kc")
    monkeypatch.setenv("ARTIFACTS", "/tmp/art")
    tester = ClusterLoader2Tester()
    assert tester.provider == "skeleton"
    assert tester.kube_config == "/tmp/kc"
    assert tester.report_dir == "/tmp/art"
    assert tester.nodes == 0


def test_build_args_basic():
    tester = ClusterLoader2Tester(provider="gce", kube_config="/k", report_dir="/r")
    assert tester.build_args() == ["--provider=gce", "--kubeconfig=/k", "--report-dir=/r"]


def test_build_args_configs_and_overrides_skip_empty():
    tester = ClusterLoader2Tester(
        provider="p", kube_config="k", report_dir="r",
        test_configs="a.yaml,,b.yaml", test_overrides="o.yaml,",
    )
    args = tester.build_args()
    assert args[3:] == [
        "--testconfig=" + "a.yaml",
        "--testconfig=" + "b.yaml",
        "--testoverrides=" + "o.yaml",
    ]


def test_build_args_adds_suite_configs_after_explicit_ones():
    tester = ClusterLoader2Tester(test_configs="mine.yaml", suites="load,unknown")
    configs = [a for a in tester.build_args() if a.startswith("--testconfig=")]
    assert configs == ["--testconfig=mine.yaml", "--testconfig=testing/load/config.yaml"]


def test_build_args_prometheus_options():
    tester = ClusterLoader2Tester(
        enable_prometheus_server=True, prometheus_pvc_storage_class="fast"
    )
    args = tester.build_args()
    assert "--enable-prometheus-server" in args
    assert args[-1] == "--prometheus-pvc-storage-class=" + "fast"


def test_build_args_without_prometheus():
    args = ClusterLoader2Tester().build_args()
    assert not any("prometheus" in arg for arg in args)


def test_test_requires_repo_root():
    with pytest.raises(ValueError, match="perf-tests"):
        ClusterLoader2Tester(repo_root="").test()


def test_execute_help_sets_flags_without_running(capsys):
    tester = ClusterLoader2Tester()
    tester.execute(
        ["--repo-root", "repo", "--suites", "density", "--nodes", "5",
         "--enable-prometheus-server", "--help"]
    )
    assert tester.repo_root == "repo"
    assert tester.suites == "density"
    assert tester.nodes == 5
    assert tester.enable_prometheus_server is True
    assert "--repo-root" in capsys.readouterr().out


def test_execute_unknown_flag_raises():
    with pytest.raises(ValueError, match="failed to parse flags"):
        ClusterLoader2Tester().execute(["--no-such-flag"])


def test_execute_bad_int_raises():
    with pytest.raises(ValueError, match="failed to parse flags"):
        ClusterLoader2Tester().execute(["--nodes", "many"])


def test_main_reports_failure(capsys):
    assert main(["--bogus-flag"]) == 255
    assert "failed to run clusterloader2 tester" in capsys.readouterr().err