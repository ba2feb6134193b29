"""Command line utilities for metrics history."""

from metrics_history.cli.app import main, run_cli

__all__ = ["main", "run_cli"]
