"""Orchestration of cluster build, provisioning, testing and teardown for end-to-end runs."""

__version__ = "0.1.0"