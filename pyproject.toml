[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubetest2"
version = "0.1.0"
description = "Orchestrates building, provisioning, testing and tearing down Kubernetes clusters for end-to-end testing"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "e2e", "testing", "junit", "deployer", "tester"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
    "Topic :: System :: Clustering",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
kubetest2 = "kubetest2.shim:main"
kubetest2-tester-exec = "kubetest2.testers.exec_tester:main"
kubetest2-tester-clusterloader2 = "kubetest2.testers.clusterloader2:main"
kubetest2-tester-ginkgo = "kubetest2.testers.ginkgo:main"

[tool.hatch.build.targets.wheel]
packages = ["kubetest2"]

[tool.hatch.build.targets.sdist]
include = ["kubetest2", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
