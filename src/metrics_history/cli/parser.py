"""Argument parsing helpers for the metrics history CLI."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Mapping, Optional

from ..exporters import exporters_registry
from .workflows import _handle_events, _handle_show, parse_hour


def _add_load_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--archive",
        type=Path,
        default=None,
        help="Directory holding recorded hours (<epoch_ms>.jsonl). Overrides tool.metrics_history.archive.",
    )
    parser.add_argument(
        "--hour",
        type=parse_hour,
        required=True,
        help="Newest hour to load, as epoch milliseconds or ISO 8601.",
    )
    parser.add_argument(
        "--hours",
        type=int,
        default=None,
        help="Number of hours to load going back from --hour (default: initial_hours).",
    )


def build_parser(config: Optional[Mapping[str, Any]] = None) -> argparse.ArgumentParser:
    config = dict(config or {})
    logging_cfg_raw = config.get("logging", {})
    logging_cfg = dict(logging_cfg_raw) if isinstance(logging_cfg_raw, Mapping) else {}

    parser = argparse.ArgumentParser(
        description="Decode recorded host metrics into hourly utilisation buffers."
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        type=Path,
        default=None,
        help="Path to the pyproject.toml holding [tool.metrics_history].",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=logging_cfg.get("level", "info"),
        help="Logging level (e.g. debug, info, warning).",
    )
    parser.add_argument(
        "--log-output",
        dest="log_output",
        default=logging_cfg.get("output", "stderr"),
        help="Logging destination (stdout, stderr or a file path).",
    )
    parser.add_argument(
        "--log-format",
        dest="log_format",
        choices=("json", "text"),
        default=logging_cfg.get("format", "json"),
        help="Logging formatter (json or text).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    show_parser = subparsers.add_parser(
        "show", help="Print the decoded hour buffers."
    )
    _add_load_arguments(show_parser)
    show_parser.add_argument(
        "--export",
        choices=sorted(exporters_registry),
        default="json",
        help="Output format (default: json).",
    )
    show_parser.set_defaults(handler=_handle_show)

    events_parser = subparsers.add_parser(
        "events", help="Print the spike events detected in the loaded hours."
    )
    _add_load_arguments(events_parser)
    events_parser.set_defaults(handler=_handle_events)

    return parser
