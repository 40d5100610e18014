"""Common interfaces shared by deployers, testers and the runner."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class IncorrectUsage(Exception):
    """Raised when the user supplied wrong arguments or flags.

    The help text is shown to the user; callers that catch this error
    should not print it a second time.
    """

    def __init__(self, help_text: str) -> None:
        super().__init__(help_text)
        self.help_text = help_text


class Options(ABC):
    """Common options supplied to every deployer."""

    @abstractmethod
    def help_requested(self) -> bool:
        """True if help should be shown instead of running."""

    @abstractmethod
    def should_build(self) -> bool:
        """True if the deployer's build step will be called."""

    @abstractmethod
    def should_up(self) -> bool:
        """True if the deployer's up step will be called."""

    @abstractmethod
    def should_down(self) -> bool:
        """True if the deployer's down step will be called."""

    @abstractmethod
    def should_test(self) -> bool:
        """True if a tester will be run."""

    @abstractmethod
    def skip_test_junit_report(self) -> bool:
        """True if the test step is not reported as a JUnit test case."""

    @abstractmethod
    def run_id(self) -> str:
        """A unique identifier for this run."""

    @abstractmethod
    def run_dir(self) -> str:
        """The directory for run-specific output files."""

    @abstractmethod
    def rundir_in_artifacts(self) -> bool:
        """True if the run directory lives inside the artifacts directory."""


class Deployer(ABC):
    """A cluster deployer.

    Any method may raise; a ``JUnitError`` carries output that is recorded
    in the runner's JUnit report.
    """

    @abstractmethod
    def up(self) -> None:
        """Provision a new cluster for testing."""

    @abstractmethod
    def down(self) -> None:
        """Tear down the test cluster, if any."""

    @abstractmethod
    def is_up(self) -> bool:
        """Return True if a test cluster is provisioned."""

    @abstractmethod
    def dump_cluster_logs(self) -> None:
        """Export logs from the cluster; may be called several times."""

    @abstractmethod
    def build(self) -> None:
        """Build kubernetes in the form the deployer consumes."""


class DeployerWithKubeconfig(Deployer):
    """A deployer that knows the path to its cluster's kubeconfig."""

    @abstractmethod
    def kubeconfig(self) -> str:
        """Return the path to a kubeconfig file for the cluster."""


class DeployerWithProvider(Deployer):
    """A deployer that names a specific kubernetes provider."""

    @abstractmethod
    def provider(self) -> str:
        """Return the kubernetes provider string."""


class DeployerWithPostTester(Deployer):
    """A deployer with behaviour to run after the tester finishes."""

    @abstractmethod
    def post_test(self, test_error: BaseException | None) -> None:
        """Run after the tester; ``test_error`` is what the tester raised."""


class DeployerWithVersion(Deployer):
    """A deployer that reports its own version."""

    @abstractmethod
    def version(self) -> str:
        """Return the deployer's version."""


@dataclass
class Tester:
    """A tester binary and the arguments it is started with."""

    tester_path: str = ""
    tester_args: list[str] = field(default_factory=list)