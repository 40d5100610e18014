"""Queries answered by the kubectl binary in PATH."""

from __future__ import annotations

import sys

from .. import command
from ..command import CommandError

_KUBECTL = "kubectl"


def _exec_and_result(name: str, *args: str) -> str:
    cmd = command.command(name, *args)
    cmd.set_stderr(sys.stderr)
    return command.output(cmd).decode("utf-8", errors="replace")


def api_server_url() -> str:
    """Return the API server URL of the current kubectl context's cluster."""
    try:
        kube_context = _exec_and_result(
            _KUBECTL, "config", "view", "-o", 'jsonpath="{.current-context}"'
        )
    except CommandError as err:
        raise CommandError(
            f"Could not get kube context: {err}", err.returncode, err.output
        ) from err

    try:
        cluster_name = _exec_and_result(
            _KUBECTL,
            "config",
            "view",
            "-o",
            f'jsonpath="{{.contexts[?(@.name == {kube_context})].context.cluster}}"',
        )
    except CommandError as err:
        raise CommandError(
            f"Could not get cluster name: {err}", err.returncode, err.output
        ) from err

    return _exec_and_result(
        _KUBECTL,
        "config",
        "view",
        "-o",
        f"jsonpath={{.clusters[?(@.name == {cluster_name})].cluster.server}}",
    )