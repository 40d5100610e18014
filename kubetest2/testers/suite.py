"""Default configurations for well-known clusterloader2 scale suites."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Suite:
    """Test configs and overrides that make up a suite."""

    test_configs: list[str] = field(default_factory=list)
    test_overrides: list[str] = field(default_factory=list)


_SUPPORTED_SUITES: dict[str, tuple[str, ...]] = {
    "load": ("testing/load/config.yaml",),
    "density": ("testing/density/config.yaml",),
    "node-throughput": ("testing/node-throughput/config.yaml",),
}


def get_suite(name: str) -> Suite | None:
    """Return the suite called ``name``, or None if it is not known."""
    configs = _SUPPORTED_SUITES.get(name)
    if configs is None:
        return None
    return Suite(test_configs=list(configs))