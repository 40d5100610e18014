"""A tester that runs the kubernetes e2e suite with ginkgo.

The test binaries are either taken from the run directory or extracted
from a published release's test package.
"""

from __future__ import annotations

import argparse
import csv
import hashlib
import logging
import os
import platform
import shlex
import shutil
import sys
import tarfile
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Sequence

from .. import artifacts, command
from ..command import CommandError
from .version_metadata import write_version_to_metadata

logger = logging.getLogger(__name__)

# The build's source revision, recorded as the tester version.
GIT_TAG = ""

_NS_PER = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_UNIT_ORDER = ("ns", "us", "µs", "μs", "ms", "s", "m", "h")
_TRUE_VALUES = {"1", "t", "T", "true", "TRUE", "True"}
_FALSE_VALUES = {"0", "f", "F", "false", "FALSE", "False"}

_GOOS = {"win32": "windows", "darwin": "darwin", "cygwin": "windows"}.get(
    sys.platform, sys.platform.rstrip("0123456789") or sys.platform
)
_GOARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}.get(platform.machine().lower(), platform.machine().lower())

_BUILT_BINARIES = ("e2e.test", "ginkgo", "kubectl")


class _ParseError(Exception):
    """The tester's flags could not be parsed."""


class _Parser(argparse.ArgumentParser):
    def error(self, message: str):  # type: ignore[override]
        raise _ParseError(message)


def _match_unit(text: str, pos: int) -> str | None:
    # longer units first so that "ms" is not read as "m"
    for unit in sorted(_UNIT_ORDER, key=len, reverse=True):
        if text.startswith(unit, pos):
            return unit
    return None


def _parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``1h30m`` or ``2.5s``."""
    invalid = ValueError(f'time: invalid duration "{text}"')
    body = text
    sign = 1
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body:
        raise invalid
    total = Decimal(0)
    pos = 0
    while pos < len(body):
        start = pos
        while pos < len(body) and (body[pos].isdigit() or body[pos] == "."):
            pos += 1
        number = body[start:pos]
        if number in ("", ".") or number.count(".") > 1:
            raise invalid
        unit = _match_unit(body, pos)
        if unit is None:
            raise invalid
        pos += len(unit)
        try:
            total += Decimal(number) * _NS_PER[unit]
        except InvalidOperation as err:
            raise invalid from err
    nanoseconds = sign * int(total)
    return timedelta(microseconds=int(nanoseconds / 1000))


def _fraction(value: int, size: int) -> str:
    whole, frac = divmod(value, size)
    if not frac:
        return str(whole)
    digits = str(frac).rjust(len(str(size)) - 1, "0").rstrip("0")
    return f"{whole}.{digits}"


def _format_duration(duration: timedelta) -> str:
    """Format a duration the way ginkgo expects, e.g. ``24h0m0s``."""
    ns = ((duration.days * 86400 + duration.seconds) * 1_000_000 + duration.microseconds) * 1000
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    u = abs(ns)
    if u < 1_000_000_000:
        if u < 1_000:
            return f"{sign}{u}ns"
        unit, size = ("µs", 1_000) if u < 1_000_000 else ("ms", 1_000_000)
        return f"{sign}{_fraction(u, size)}{unit}"
    hours, rest = divmod(u, _NS_PER["h"])
    minutes, rest = divmod(rest, _NS_PER["m"])
    seconds = _fraction(rest, _NS_PER["s"]) + "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes:
        return f"{sign}{minutes}m{seconds}"
    return sign + seconds


def _duration_arg(text: str) -> timedelta:
    try:
        return _parse_duration(text)
    except ValueError as err:
        raise argparse.ArgumentTypeError(str(err)) from err


def _bool_arg(text: str) -> bool:
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise argparse.ArgumentTypeError(f'invalid boolean value "{text}"')


class _StringSliceAction(argparse.Action):
    """Comma separated values; the first use replaces the default, later ones append."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._seen = False

    def __call__(self, parser, namespace, values, option_string=None) -> None:
        items = next(csv.reader([values]), []) if values else []
        if self._seen:
            setattr(namespace, self.dest, list(getattr(namespace, self.dest) or []) + items)
        else:
            setattr(namespace, self.dest, items)
            self._seen = True


def _user_cache_dir() -> str:
    if sys.platform in ("win32", "cygwin"):
        local = os.environ.get("LocalAppData", "")
        if not local:
            raise RuntimeError("%LocalAppData% is not defined")
        return local
    if sys.platform == "darwin":
        home = os.environ.get("HOME", "")
        if not home:
            raise RuntimeError("$HOME is not defined")
        return os.path.join(home, "Library", "Caches")
    xdg = os.environ.get("XDG_CACHE_HOME", "")
    if xdg:
        if not os.path.isabs(xdg):
            raise RuntimeError("path in $XDG_CACHE_HOME is relative")
        return xdg
    home = os.environ.get("HOME", "")
    if not home:
        raise RuntimeError("neither $XDG_CACHE_HOME nor $HOME are defined")
    return os.path.join(home, ".cache")


def sha256sum(path: str) -> str:
    """Return the hex SHA-256 digest of the file at ``path``."""
    digest = hashlib.sha256()
    with open(path, "rb") as source:
        for chunk in iter(lambda: source.read(64 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclass
class GinkgoTester:
    """Options of a ginkgo e2e run."""

    flake_attempts: int = 1
    ginkgo_args: str = ""
    parallel: int = 1
    skip_regex: str = ""
    focus_regex: str = ""
    test_package_version: str = ""
    test_package_bucket: str = "kubernetes-release"
    test_package_dir: str = "release"
    test_package_marker: str = "latest.txt"
    test_args: str = ""
    use_built_binaries: bool = False
    timeout: timedelta = field(default_factory=lambda: timedelta(hours=24))
    env: list[str] | None = None

    kubeconfig_path: str = field(default="", init=False)
    run_dir: str = field(default="", init=False)
    e2e_test_path: str = field(default="", init=False)
    ginkgo_path: str = field(default="", init=False)
    kubectl_path: str = field(default="", init=False)

    def test(self) -> None:
        """Record the version, prepare the binaries and run ginkgo."""
        write_version_to_metadata(GIT_TAG)
        self._pretest_setup()

        e2e_args = [
            f"--kubeconfig={self.kubeconfig_path}",
            f"--kubectl-path={self.kubectl_path}",
            f"--ginkgo.skip={self.skip_regex}",
            f"--ginkgo.focus={self.focus_regex}",
            f"--report-dir={artifacts.base_dir()}",
            f"--ginkgo.timeout={_format_duration(self.timeout)}",
        ]

        # some ginkgo flags and behaviours are not backwards compatible
        version = self.ginkgo_major_version()
        if version != "2":
            raise RuntimeError(f"unsupported ginkgo version: {version}")
        e2e_args.append(f"--ginkgo.flake-attempts={self.flake_attempts}")

        try:
            e2e_args += shlex.split(self.test_args)
        except ValueError as err:
            raise ValueError(f"error parsing --test-args: {err}") from err
        try:
            extra_ginkgo_args = shlex.split(self.ginkgo_args)
        except ValueError as err:
            raise ValueError(f"error parsing --gingko-args: {err}") from err

        ginkgo_args = [
            *extra_ginkgo_args,
            f"--nodes={self.parallel}",
            self.e2e_test_path,
            "--",
            *e2e_args,
        ]
        logger.info("Running ginkgo test as %s %s", self.ginkgo_path, ginkgo_args)
        cmd = command.command(self.ginkgo_path, *ginkgo_args)
        cmd.set_env(*(self.env or ()))
        command.inherit_output(cmd)
        cmd.run()

    def _pretest_setup(self) -> None:
        config = os.environ.get("KUBECONFIG", "")
        if config:
            # ginkgo changes its working directory, so the path must be absolute
            if not os.path.isabs(config):
                absolute = os.path.abspath(config)
                logger.info(
                    "Ginkgo tester received a non-absolute path for KUBECONFIG. "
                    "Updating to: %s",
                    absolute,
                )
                config = absolute
            self.kubeconfig_path = config
        else:
            self.kubeconfig_path = os.path.join(os.path.expanduser("~"), ".kube", "config")
        logger.info("Using kubeconfig at %s", self.kubeconfig_path)

        if self.use_built_binaries:
            self._validate_local_binaries()
            return
        try:
            self.acquire_test_package()
        except Exception as err:
            raise RuntimeError(
                f"failed to get ginkgo test package from published releases: {err}"
            ) from err

    def _validate_local_binaries(self) -> None:
        logger.debug("checking existing test binaries ...")
        for binary in _BUILT_BINARIES:
            path = os.path.join(self.run_dir, binary)
            try:
                os.stat(path)
            except OSError as err:
                raise RuntimeError(
                    f"failed to validate pre-built binary {binary} "
                    f"(checked at {os.path.abspath(path)!r}): {err}"
                ) from err
            logger.debug("found existing %s at %s", binary, path)
        self.e2e_test_path = os.path.join(self.run_dir, "e2e.test")
        self.ginkgo_path = os.path.join(self.run_dir, "ginkgo")
        self.kubectl_path = os.path.join(self.run_dir, "kubectl")

    def ginkgo_major_version(self) -> str:
        """Return ginkgo's major version, or an empty string if unknown."""
        logger.debug("checking ginkgo version ...")
        try:
            lines = command.output_lines(command.command(self.ginkgo_path, "version"))
        except CommandError:
            return ""
        if len(lines) != 1:
            return ""
        # the output looks like "Ginkgo Version 2.1.4"
        parts = lines[0].split(" ")
        if len(parts) != 3:
            return ""
        numbers = parts[2].split(".")
        if len(numbers) != 3:
            return ""
        return numbers[0]

    def _parser(self) -> _Parser:
        parser = _Parser(prog="kubetest2-tester-ginkgo", add_help=False)
        parser.add_argument(
            "--flake-attempts", dest="flake_attempts", type=int, default=self.flake_attempts,
            help="Make up to this many attempts to run each spec.",
        )
        parser.add_argument(
            "--ginkgo-args", dest="ginkgo_args", default=self.ginkgo_args,
            help="Additional arguments supported by the ginkgo binary.",
        )
        parser.add_argument(
            "--parallel", type=int, default=self.parallel,
            help="Run this many tests in parallel at once.",
        )
        parser.add_argument(
            "--skip-regex", dest="skip_regex", default=self.skip_regex,
            help="Regular expression of jobs to skip.",
        )
        parser.add_argument(
            "--focus-regex", dest="focus_regex", default=self.focus_regex,
            help="Regular expression of jobs to focus on.",
        )
        parser.add_argument(
            "--test-package-version", dest="test_package_version",
            default=self.test_package_version,
            help=(
                "The ginkgo tester uses a test package made during the kubernetes build. "
                "The tester downloads this test package from one of the release tars "
                "published to the Release bucket. Defaults to latest. "
                "Example: v1.20.0-alpha.0"
            ),
        )
        parser.add_argument(
            "--test-package-bucket", dest="test_package_bucket",
            default=self.test_package_bucket,
            help=(
                "The bucket which release tars will be downloaded from to acquire the "
                "test package. Defaults to the main kubernetes project bucket."
            ),
        )
        parser.add_argument(
            "--test-package-dir", dest="test_package_dir", default=self.test_package_dir,
            help=(
                "The directory in the bucket which represents the type of release. "
                "Default to the release directory."
            ),
        )
        parser.add_argument(
            "--test-package-marker", dest="test_package_marker",
            default=self.test_package_marker,
            help=(
                "The version marker in the directory containing the package version to "
                "download when unspecified. Defaults to latest.txt."
            ),
        )
        parser.add_argument(
            "--test-args", dest="test_args", default=self.test_args,
            help="Additional arguments supported by the e2e test framework.",
        )
        parser.add_argument(
            "--use-built-binaries", dest="use_built_binaries", type=_bool_arg,
            nargs="?", const=True, default=self.use_built_binaries,
            help=(
                "Look for binaries in _rundir/$KUBETEST2_RUN_DIR instead of extracting "
                "from tars downloaded from GCS."
            ),
        )
        parser.add_argument(
            "--timeout", type=_duration_arg, default=self.timeout,
            help="How long (e.g. 1h30m) to wait for ginkgo tests to complete.",
        )
        parser.add_argument(
            "--env", action=_StringSliceAction, default=self.env,
            help="List of env variables to pass to ginkgo libraries",
        )
        parser.add_argument(
            "-h", "--help", type=_bool_arg, nargs="?", const=True, default=False,
            help="show this help",
        )
        return parser

    def execute(self, argv: Sequence[str] | None = None) -> None:
        """Parse ``argv`` into the options, then print help or run the test."""
        args = list(sys.argv[1:] if argv is None else argv)
        if "--" in args:
            args = args[: args.index("--")]
        parser = self._parser()
        try:
            namespace, rest = parser.parse_known_args(args)
        except _ParseError as err:
            raise ValueError(f"failed to parse flags: {err}") from err
        unknown = [arg for arg in rest if arg.startswith("-") and arg != "-"]
        if unknown:
            raise ValueError(f"failed to parse flags: unknown flag: {unknown[0]}")

        for name, value in vars(namespace).items():
            if name != "help":
                setattr(self, name, value)

        if namespace.help:
            parser.print_help(sys.stdout)
            return
        self._init_kubetest2_info()
        self.test()

    def _init_kubetest2_info(self) -> None:
        directory = os.environ.get("KUBETEST2_RUN_DIR")
        if directory is not None:
            self.run_dir = directory
        elif self.use_built_binaries:
            # built binaries are found in the run directory
            self.run_dir = artifacts.run_dir()
        else:
            self.run_dir = os.getcwd()

    def set_run_dir(self, run_dir: str) -> None:
        """Use ``run_dir`` as the directory holding the test binaries."""
        self.run_dir = run_dir

    def acquire_test_package(self) -> None:
        """Place ginkgo, e2e.test and kubectl from a published release in the run dir."""
        if not self.test_package_version:
            marker = (
                f"gs://{self.test_package_bucket}/{self.test_package_dir}/"
                f"{self.test_package_marker}"
            )
            try:
                lines = command.output_lines(command.command("gsutil", "cat", marker))
            except CommandError as err:
                raise RuntimeError(f"failed to get latest release name: {err}") from err
            if not lines:
                raise RuntimeError("getting latest release name had no output")
            self.test_package_version = lines[0]
            logger.info(
                "Test package version was not specified. Defaulting to version from %s: %s",
                self.test_package_marker,
                self.test_package_version,
            )

        release_tar = f"kubernetes-test-{_GOOS}-{_GOARCH}.tar.gz"
        try:
            download_dir = _user_cache_dir()
        except RuntimeError as err:
            raise RuntimeError(f"failed to get user cache directory: {err}") from err
        download_path = os.path.join(download_dir, release_tar)

        self._ensure_release_tar(download_path, release_tar)
        self._extract_binaries(download_path)

        self.kubectl_path = os.path.join(artifacts.run_dir(), "kubectl")
        self._ensure_kubectl(self.kubectl_path)

    def _extract_binaries(self, download_path: str) -> None:
        os.makedirs(artifacts.base_dir(), exist_ok=True)
        run_directory = artifacts.run_dir()
        os.makedirs(run_directory, exist_ok=True)

        self.e2e_test_path = os.path.join(run_directory, "e2e.test")
        self.ginkgo_path = os.path.join(run_directory, "ginkgo")
        wanted = {
            "kubernetes/test/bin/e2e.test": self.e2e_test_path,
            "kubernetes/test/bin/ginkgo": self.ginkgo_path,
        }
        extracted: set[str] = set()

        try:
            archive = tarfile.open(download_path, "r:gz")
        except tarfile.ReadError as err:
            raise RuntimeError(f"failed to create gzip reader: {err}") from err
        except OSError as err:
            raise RuntimeError(
                f"failed to open downloaded tar at {download_path}: {err}"
            ) from err

        with archive:
            try:
                for member in archive:
                    dest = wanted.get(member.name)
                    if dest:
                        self._extract_member(archive, member, dest)
                        extracted.add(member.name)
                    if len(extracted) == len(wanted):
                        break
            except (tarfile.TarError, EOFError) as err:
                raise RuntimeError(f"error during tar read: {err}") from err

        for name in wanted:
            if name not in extracted:
                raise RuntimeError(f"failed to find {name} in {download_path}")

    @staticmethod
    def _extract_member(archive: tarfile.TarFile, member: tarfile.TarInfo, dest: str) -> None:
        try:
            out = open(dest, "wb")
        except OSError as err:
            raise RuntimeError(f"error creating file at {dest}: {err}") from err
        with out:
            try:
                os.chmod(dest, 0o700)
            except OSError as err:
                raise RuntimeError(f"failed to make {dest} executable: {err}") from err
            source = archive.extractfile(member)
            if source is None:
                return
            try:
                shutil.copyfileobj(source, out)
            except (OSError, tarfile.TarError) as err:
                raise RuntimeError(
                    f"error reading data from tar with header name {member.name}: {err}"
                ) from err

    def _ensure_kubectl(self, download_path: str) -> None:
        """Reuse a kubectl whose hash matches, otherwise download it."""
        remote = (
            f"gs://{self.test_package_bucket}/{self.test_package_dir}/"
            f"{self.test_package_version}/bin/{_GOOS}/{_GOARCH}/kubectl"
        )
        if self._existing_matches(download_path, remote, "kubectl"):
            return
        cmd = command.command("gsutil", "cp", remote, download_path)
        command.inherit_output(cmd)
        try:
            cmd.run()
        except CommandError as err:
            raise RuntimeError(
                f"failed to download kubectl for release {self.test_package_version}: {err}"
            ) from err
        try:
            os.chmod(download_path, 0o700)
        except OSError as err:
            raise RuntimeError(f"failed to make {download_path} executable: {err}") from err

    def _ensure_release_tar(self, download_path: str, release_tar: str) -> None:
        """Reuse a test package whose hash matches, otherwise download it."""
        remote = (
            f"gs://{self.test_package_bucket}/{self.test_package_dir}/"
            f"{self.test_package_version}/{release_tar}"
        )
        if self._existing_matches(download_path, remote, "tar"):
            return
        cmd = command.command("gsutil", "cp", remote, download_path)
        command.inherit_output(cmd)
        try:
            cmd.run()
        except CommandError as err:
            raise RuntimeError(
                f"failed to download release tar {release_tar} for release "
                f"{self.test_package_version}: {err}"
            ) from err

    def _existing_matches(self, download_path: str, remote: str, what: str) -> bool:
        if not os.path.exists(download_path):
            return False
        logger.info("Found existing %s at %s", what, download_path)
        try:
            self._compare_sha(download_path, remote)
        except RuntimeError as err:
            logger.warning("%s", err)
            return False
        logger.info("Validated hash for existing %s at %s", what, download_path)
        return True

    def _compare_sha(self, download_path: str, remote: str) -> None:
        try:
            expected = command.output(command.command("gsutil", "cat", f"{remote}.sha256"))
        except CommandError as err:
            raise RuntimeError(
                f"failed to get sha256 for file {remote} for release "
                f"{self.test_package_version}: {err}"
            ) from err
        expected_sha = expected.decode("utf-8", errors="replace").removesuffix("\n")
        try:
            actual_sha = sha256sum(download_path)
        except OSError as err:
            raise RuntimeError(f"failed to compute sha256 for {download_path!r}: {err}") from err
        if actual_sha != expected_sha:
            raise RuntimeError("sha256 does not match")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the ginkgo tester; returns the process exit code."""
    try:
        GinkgoTester().execute(argv)
    except Exception as err:
        sys.stderr.write(f"failed to run ginkgo tester: {err}\n")
        return 255
    return 0