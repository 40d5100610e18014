"""Testers that run test suites against a cluster, and helpers they share."""