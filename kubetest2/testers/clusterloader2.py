"""A tester that runs clusterloader2 scale tests from a perf-tests checkout."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Sequence

from .. import command
from .suite import get_suite
from .version_metadata import write_version_to_metadata

logger = logging.getLogger(__name__)

# The build's source revision, recorded as the tester version.
GIT_TAG = ""


class _ParseError(Exception):
    """The tester's flags could not be parsed."""


class _Parser(argparse.ArgumentParser):
    def error(self, message: str):  # type: ignore[override]
        raise _ParseError(message)


def _split(value: str) -> list[str]:
    return value.split(",")


@dataclass
class ClusterLoader2Tester:
    """Options of a clusterloader2 run."""

    suites: str = ""
    test_overrides: str = ""
    test_configs: str = ""
    provider: str = "skeleton"
    kube_config: str = field(default_factory=lambda: os.environ.get("KUBECONFIG", ""))
    repo_root: str = ""
    report_dir: str = field(default_factory=lambda: os.environ.get("ARTIFACTS", ""))
    nodes: int = 0
    enable_prometheus_server: bool = False
    prometheus_pvc_storage_class: str = ""

    def build_args(self) -> list[str]:
        """Return the clusterloader2 arguments for these options."""
        test_configs = _split(self.test_configs)
        test_overrides = _split(self.test_overrides)
        for name in _split(self.suites):
            suite = get_suite(name)
            if suite is not None:
                test_configs.extend(suite.test_configs)
                test_overrides.extend(suite.test_overrides)

        args = [
            f"--provider={self.provider}",
            f"--kubeconfig={self.kube_config}",
            f"--report-dir={self.report_dir}",
        ]
        args += [f"--testconfig={tc}" for tc in test_configs if tc]
        args += [f"--testoverrides={to}" for to in test_overrides if to]
        if self.enable_prometheus_server:
            args.append("--enable-prometheus-server")
        if self.prometheus_pvc_storage_class:
            args.append(f"--prometheus-pvc-storage-class={self.prometheus_pvc_storage_class}")
        return args

    def test(self) -> None:
        """Run clusterloader2 with ``go run`` inside the repository."""
        if not self.repo_root:
            raise ValueError("required path to kubernetes/perf-tests repository")
        args = self.build_args()
        cmd = command.command("go", "run", "cmd/clusterloader.go", *args)
        command.inherit_output(cmd)
        cmd.set_dir(os.path.join(self.repo_root, "clusterloader2"))
        logger.debug("running clusterloader2 %s", args)
        cmd.run()

    def _parser(self) -> _Parser:
        parser = _Parser(prog="kubetest2-tester-clusterloader2", add_help=False)
        parser.add_argument(
            "--suites", default=self.suites,
            help="Comma separated list of standard scale testing suites e.g. load, density",
        )
        parser.add_argument(
            "--test-overrides", dest="test_overrides", default=self.test_overrides,
            help=(
                "Comma separated list of paths to the config override files. The latter "
                "overrides take precedence over changes in former files."
            ),
        )
        parser.add_argument(
            "--test-configs", dest="test_configs", default=self.test_configs,
            help="Comma separated list of paths to test config files.",
        )
        parser.add_argument(
            "--provider", default=self.provider,
            help="The type of cluster provider used (e.g gke, gce, skeleton)",
        )
        parser.add_argument(
            "--kube-config", dest="kube_config", default=self.kube_config,
            help=(
                "Path to kubeconfig. If specified will override the path exposed by "
                "the kubetest2 deployer."
            ),
        )
        parser.add_argument(
            "--repo-root", dest="repo_root", default=self.repo_root,
            help="Path to repository root of kubernetes/perf-tests",
        )
        parser.add_argument(
            "--report-dir", dest="report_dir", default=self.report_dir,
            help=(
                "Path to directory, where summaries files should be stored. If not "
                "specified, summaries are stored in $ARTIFACTS directory"
            ),
        )
        parser.add_argument(
            "--nodes", type=int, default=self.nodes,
            help="Number of nodes in the cluster. 0 will auto-detect schedulable nodes.",
        )
        parser.add_argument(
            "--enable-prometheus-server", dest="enable_prometheus_server",
            action="store_true", default=self.enable_prometheus_server,
            help="Whether to set-up the prometheus server in the cluster.",
        )
        parser.add_argument(
            "--prometheus-pvc-storage-class", dest="prometheus_pvc_storage_class",
            default=self.prometheus_pvc_storage_class,
            help="Storage class used with prometheus persistent volume claim.",
        )
        parser.add_argument("-h", "--help", action="store_true", help="show this help")
        return parser

    def execute(self, argv: Sequence[str] | None = None) -> None:
        """Parse ``argv`` into the options, then print help or run the test."""
        args = list(sys.argv[1:] if argv is None else argv)
        parser = self._parser()
        try:
            namespace, rest = parser.parse_known_args(args)
        except _ParseError as err:
            raise ValueError(f"failed to parse flags: {err}") from err
        unknown = [arg for arg in rest if arg.startswith("-") and arg not in ("-", "--")]
        if unknown:
            raise ValueError(f"failed to parse flags: unknown flag: {unknown[0]}")

        for name, value in vars(namespace).items():
            if name != "help":
                setattr(self, name, value)

        if namespace.help:
            parser.print_help(sys.stdout)
            return
        write_version_to_metadata(GIT_TAG)
        self.test()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the clusterloader2 tester; returns the process exit code."""
    try:
        ClusterLoader2Tester().execute(argv)
    except Exception as err:
        sys.stderr.write(f"failed to run clusterloader2 tester: {err}\n")
        return 255
    return 0