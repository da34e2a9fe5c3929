"""Cortex API client, end-to-end alerting receiver and runner, benchmark workloads, chunk index helpers and command-line tools."""

__version__ = "0.1.0"