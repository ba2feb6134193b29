"""Logging utilities for metrics history."""

from metrics_history.logging.config import JsonFormatter, setup_logging

__all__ = ["JsonFormatter", "setup_logging"]
