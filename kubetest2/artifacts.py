"""Locations of the artifacts directory and the run directory."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass


@dataclass
class _FlagValues:
    artifacts: str = ""
    rundir: str = ""


_flags = _FlagValues()


def _absolute_from_env(variable: str, fallback: str, what: str) -> str:
    path = os.environ.get(variable)
    if path is not None:
        try:
            return os.path.abspath(path)
        except OSError as err:
            raise OSError(
                f"failed to convert filepath from ${variable} ({path}) "
                f"to absolute path: {err}"
            ) from err
    try:
        return os.path.abspath(fallback)
    except OSError as err:
        raise OSError(
            f"when constructing default {what}, failed to get absolute path: {err}"
        ) from err


def default_artifacts_dir() -> str:
    """Return $ARTIFACTS if set, otherwise ./_artifacts, as an absolute path."""
    return _absolute_from_env("ARTIFACTS", "_artifacts", "artifacts dir")


def default_run_dir() -> str:
    """Return $KUBETEST2_RUN_DIR if set, otherwise ./_rundir, as an absolute path."""
    return _absolute_from_env("KUBETEST2_RUN_DIR", "_rundir", "rundir")


def base_dir() -> str:
    """Return the directory where artifacts (including metadata) are written."""
    return _flags.artifacts or default_artifacts_dir()


def run_dir() -> str:
    """Return the directory for files specific to a single run."""
    return _flags.rundir or default_run_dir()


def run_dir_flag() -> str:
    """Return the value given with --rundir, or an empty string."""
    return _flags.rundir


def bind_flags(parser: argparse.ArgumentParser) -> None:
    """Add the --artifacts and --rundir options to ``parser``."""
    parser.add_argument(
        "--artifacts",
        default=default_artifacts_dir(),
        help=(
            "top-level directory to put artifacts under for each kubetest2 run, "
            'defaulting to "${ARTIFACTS:-./_artifacts}". If using the ginkgo '
            "tester, this must be an absolute path."
        ),
    )
    parser.add_argument(
        "--rundir",
        default="",
        help=(
            "directory to put run related test binaries like e2e.test, ginkgo, "
            'kubectl for each kubetest2 run, defaulting to "${KUBETEST2_RUN_DIR:-./_rundir}". '
            "If using the ginkgo tester, this must be an absolute path."
        ),
    )


def apply_flags(namespace: argparse.Namespace) -> None:
    """Record the parsed --artifacts and --rundir values for this process."""
    _flags.artifacts = getattr(namespace, "artifacts", "") or ""
    _flags.rundir = getattr(namespace, "rundir", "") or ""