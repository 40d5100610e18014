"""The core run: build, bring a cluster up, test and tear it down.

Metadata about the run is collected throughout and written out on exit.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from contextlib import contextmanager
from typing import IO, Iterator

from . import artifacts, command
from .interfaces import (
    Deployer,
    DeployerWithKubeconfig,
    DeployerWithPostTester,
    DeployerWithVersion,
    Options,
    Tester,
)
from .junit import Writer
from .metadata import CustomJSON

logger = logging.getLogger(__name__)

_CLEANUP_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP")
    if hasattr(signal, name)
)


def _sync(stream: IO[str]) -> None:
    stream.flush()
    os.fsync(stream.fileno())


@contextmanager
def _interrupt_cleanup(opts: Options, deployer: Deployer, writer: Writer) -> Iterator[None]:
    """On an interrupt, tear the cluster down if one may exist, then exit."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handle(_signum: int, _frame: object) -> None:
        if not (opts.should_up() or opts.should_test()):
            return
        if opts.should_down():
            logger.info("Captured ^C, gracefully attempting to cleanup resources..")
            try:
                writer.wrap_step("Down", deployer.down)
            except Exception as err:  # the process exits regardless
                logger.error("cleanup after interrupt failed: %s", err)
        for stream in (sys.stdout, sys.stderr):
            try:
                stream.flush()
            except (AttributeError, OSError, ValueError):
                pass
        os._exit(0)

    previous = {}
    for sig in _CLEANUP_SIGNALS:
        try:
            previous[sig] = signal.signal(sig, handle)
        except (OSError, ValueError):
            continue
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _tester_environment(opts: Options, deployer: Deployer) -> list[str]:
    env = [f"{key}={value}" for key, value in os.environ.items()]
    updated_path = opts.run_dir() + os.pathsep + os.environ.get("PATH", "")
    env.append(f"PATH={updated_path}")
    env.append(f"ARTIFACTS={artifacts.base_dir()}")
    env.append(f"KUBETEST2_RUN_DIR={opts.run_dir()}")
    env.append(f"KUBETEST2_RUN_ID={opts.run_id()}")
    if isinstance(deployer, DeployerWithKubeconfig):
        try:
            kubeconfig = deployer.kubeconfig()
        except Exception:
            pass
        else:
            env.append(f"KUBECONFIG={kubeconfig}")
    return env


def _run_test(opts: Options, deployer: Deployer, tester: Tester, writer: Writer) -> None:
    test = command.command(tester.tester_path, *tester.tester_args)
    command.inherit_output(test)
    test.set_env(*_tester_environment(opts, deployer))

    test_error: Exception | None = None
    try:
        if opts.skip_test_junit_report():
            test.run()
        else:
            writer.wrap_step("Test", test.run)
    except Exception as err:
        test_error = err

    if isinstance(deployer, DeployerWithPostTester):
        deployer.post_test(test_error)
    if test_error is not None:
        raise test_error


def _run_steps(opts: Options, deployer: Deployer, tester: Tester, writer: Writer) -> None:
    if opts.should_build():
        # nothing else runs if the build fails
        writer.wrap_step("Build", deployer.build)

    # tearing down happens last, also when up or test fails
    try:
        if opts.should_up():
            writer.wrap_step("Up", deployer.up)
        if opts.should_test():
            _run_test(opts, deployer, tester, writer)
    except Exception:
        if opts.should_down():
            try:
                writer.wrap_step("Down", deployer.down)
            except Exception as down_err:
                logger.error("tearing down after a failure failed: %s", down_err)
        raise
    if opts.should_down():
        writer.wrap_step("Down", deployer.down)


def real_main(opts: Options, deployer: Deployer, tester: Tester) -> None:
    """Run the build, up, test and down steps that ``opts`` asks for.

    The first error met is raised after the JUnit report has been written.
    """
    if not opts.rundir_in_artifacts():
        logger.info("The files in RunDir shall not be part of Artifacts")
        logger.info("pass rundir-in-artifacts flag True for RunDir to be part of Artifacts")
    run_directory = opts.run_dir()
    logger.info("RunDir for this run: %r", run_directory)

    os.makedirs(run_directory, exist_ok=True)
    base = artifacts.base_dir()
    os.makedirs(base, exist_ok=True)

    write_version_to_metadata_json(deployer)

    try:
        junit_runner = open(os.path.join(base, "junit_runner.xml"), "w", encoding="utf-8")
    except OSError as err:
        raise OSError(f"could not create runner output: {err}") from err
    writer = Writer("kubetest2", junit_runner)

    error: Exception | None = None
    with _interrupt_cleanup(opts, deployer, writer):
        try:
            logger.info("ID for this run: %r", opts.run_id())
            _run_steps(opts, deployer, tester, writer)
        except Exception as err:
            error = err
        for finalize in (writer.finish, lambda: _sync(junit_runner), junit_runner.close):
            try:
                finalize()
            except Exception as err:
                if error is None:
                    error = err
    if error is not None:
        raise error


def write_version_to_metadata_json(deployer: Deployer) -> None:
    """Write metadata.json with the kubetest2 version and the deployer's, if known."""
    path = os.path.join(artifacts.base_dir(), "metadata.json")
    with open(path, "w", encoding="utf-8") as out:
        meta = CustomJSON()
        meta.add("kubetest-version", os.environ.get("KUBETEST2_VERSION", ""))
        if isinstance(deployer, DeployerWithVersion):
            meta.add("deployer-version", deployer.version())
        meta.write(out)
        _sync(out)