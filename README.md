# kubetest2

kubetest2 is a framework for Kubernetes end-to-end testing. It orchestrates
the stages of a test run (building Kubernetes, bringing a cluster up,
running tests against it and tearing it down) while recording the outcome
of every stage as JUnit XML and run metadata as JSON.

The work is split between three kinds of programs:

- **`kubetest2`**, the root command. It looks up a *deployer* by name and
  hands the remaining arguments over to it.
- **Deployers**, executables named `kubetest2-<name>` found on `PATH`. A
  deployer knows how to build, provision and tear down one kind of cluster.
- **Testers**, executables named `kubetest2-tester-<name>` found on `PATH`.
  A tester runs a test suite against the cluster a deployer has brought up.

## The root command

```
kubetest2 --help
```

prints general help followed by every deployer and tester detected on
`PATH` (`-h` works too, as does running `kubetest2` with no arguments).

```
kubetest2 --version
```

prints `kubetest2 version <tag>` (`-v` works too). Any other invocation
treats the first argument as the deployer name and runs
`kubetest2-<deployer>` with the rest of the arguments, passing on the
standard streams, forwarding signals and exposing the version in the
`KUBETEST2_VERSION` environment variable:

```
kubetest2 <deployer> [deployer arguments...]
```

If the deployer cannot be found, an error and the usage text are printed
and the command exits with status 1; it also exits with 1 when the deployer
fails.

## Bundled testers

Each tester records its version as `tester-version` in `metadata.json` in
the artifacts directory (`$ARTIFACTS`, or `./_artifacts`) before running,
keeping any entries already there. On failure a tester prints
`failed to run <name> tester: <error>` and exits with status 255.

### exec

```
kubetest2-tester-exec <command> [args...]
```

Runs an arbitrary command with the current environment. `$VAR` and
`${VAR}` references in the arguments are expanded from the environment; an
argument containing `\$` is instead taken literally with the backslash
removed. The command's output is passed through to this process and, if the
command fails, is carried by the raised `kubetest2.process.ExecJUnitError`.
With no arguments, or `-h`/`--help` as the first one, it prints its usage.

### clusterloader2

```
kubetest2-tester-clusterloader2 --repo-root=<perf-tests checkout> --suites=load
```

Runs `go run cmd/clusterloader.go` in the `clusterloader2` directory of a
checkout of the performance test repository. The `load`, `density` and
`node-throughput` suites are known by name (`kubetest2.testers.suite.get_suite`);
further test configs and overrides can be given as comma separated lists with
`--test-configs` and `--test-overrides`. Other options: `--provider`
(default `skeleton`), `--kube-config` (default `$KUBECONFIG`),
`--report-dir` (default `$ARTIFACTS`), `--nodes`,
`--enable-prometheus-server` and `--prometheus-pvc-storage-class`. Needs
`go` on `PATH`.

### ginkgo

```
kubetest2-tester-ginkgo --focus-regex=<regex> --parallel=4
```

Runs the Kubernetes e2e test binary through ginkgo (only ginkgo major
version 2 is accepted). The `e2e.test`, `ginkgo` and `kubectl` binaries are
either taken from the run directory (`--use-built-binaries`) or fetched with
`gsutil` from a release bucket (`--test-package-bucket`,
`--test-package-dir`, `--test-package-version`, `--test-package-marker`).
The test package is cached in the user cache directory, and cached files are
reused only when their SHA-256 matches the published checksum. Other options
include `--skip-regex`, `--flake-attempts`, `--timeout` (e.g. `1h30m`,
default `24h`), `--test-args`, `--ginkgo-args` and `--env`.

## Writing a deployer

A deployer is a class implementing `kubetest2.interfaces.Deployer`
(`up`, `down`, `is_up`, `dump_cluster_logs`, `build`). It may additionally
implement `DeployerWithKubeconfig`, `DeployerWithProvider`,
`DeployerWithPostTester` or `DeployerWithVersion`.

`kubetest2.runner.real_main(opts, deployer, tester)` runs a whole test:
it takes an implementation of `kubetest2.interfaces.Options` saying which
steps to run, the deployer, and a `kubetest2.interfaces.Tester` (path and
arguments of the tester executable). It creates the run and artifacts
directories, writes `metadata.json` and `junit_runner.xml` there, runs the
build, up and test steps asked for, and tears the cluster down last, also
when up or test fails and on an interrupt. The tester is started with
`ARTIFACTS`, `KUBETEST2_RUN_DIR`, `KUBETEST2_RUN_ID` and, when the deployer
provides one, `KUBECONFIG` set, and with the run directory prepended to its
`PATH`. The first error met is raised after the report is written.

Errors that carry captured command output should be
`kubetest2.junit.JUnitError` instances, so that the output lands in the
`<system-out>` element of the report. `kubetest2.interfaces.IncorrectUsage`
is the error for wrong arguments; it carries the help text to show.

## What is not included

This package has no ready-made command-line front end for deployers: there
is nothing that parses the common deployer flags (such as build, up, down
or the tester name), looks up the tester, prints combined deployer and
tester usage and then calls `real_main`. A deployer executable has to
provide its own `Options` implementation and argument parsing; the
`--artifacts` and `--rundir` options can be added to an `argparse` parser
with `kubetest2.artifacts.bind_flags` and recorded with
`kubetest2.artifacts.apply_flags`. No deployers are bundled.

## Library pieces

- `kubetest2.junit.Writer` times steps with `wrap_step(name, do_step)` and
  writes the JUnit suite on `finish()`.
- `kubetest2.metadata.CustomJSON` holds string key/value metadata, refusing
  duplicate keys, and writes it as compact JSON with sorted keys.
- `kubetest2.artifacts` gives the artifacts and run directories
  (`base_dir`, `run_dir`).
- `kubetest2.command` wraps local command execution, with helpers such as
  `output`, `output_lines`, `combined_output_lines` and `raw_command`.
- `kubetest2.process.exec_process` and `exec_junit` run a child process as
  if it replaced the current one, forwarding signals.
- `kubetest2.shim.find_deployers` and `find_testers` list what is available
  on `PATH`.
- `kubetest2.fs.copy_file` copies a file, creating parent directories.
- `kubetest2.testers.kubectl.api_server_url` asks `kubectl` for the API
  server URL of the current context.

## Running the tests

The tests use pytest and are installed with the `test` extra.