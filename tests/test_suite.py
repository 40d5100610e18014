import pytest

from kubetest2.testers.suite import Suite, get_suite


@pytest.mark.parametrize(
    "name, config",
    [
        ("load", "testing/load/config.yaml"),
        ("density", "testing/density/config.yaml"),
        ("node-throughput", "testing/node-throughput/config.yaml"),
    ],
)
def test_known_suites(name, config):
    suite = get_suite(name)
    assert suite == Suite(test_configs=[config], test_overrides=[])


@pytest.mark.parametrize("name", ["", "unknown", "Load", "load,density"])
def test_unknown_suite_is_none(name):
    assert get_suite(name) is None


def test_returned_suites_are_independent():
    first = get_suite("load")
    first.test_configs.append("extra.yaml")
    assert get_suite("load").test_configs == ["testing/load/config.yaml"]