"""Command handlers for the metrics history CLI."""

from __future__ import annotations

import argparse
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

from ..cache import HourWindowCache, LoadState
from ..configuration import HistorySettings
from ..exporters import exporters_registry
from ..sources import ArchiveReplaySource
from ..timeline import HistoryTimeline
from .errors import CliError


def parse_hour(value: str) -> int:
    """Parse ``value`` as epoch milliseconds or an ISO 8601 timestamp."""

    text = value.strip()
    if text.lstrip("-").isdigit():
        return int(text)
    try:
        moment = datetime.fromisoformat(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"invalid hour {value!r}: expected epoch milliseconds or ISO 8601"
        ) from exc
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return int(moment.timestamp() * 1000)


def _resolve_archive(namespace: argparse.Namespace, settings: HistorySettings) -> Path:
    archive = getattr(namespace, "archive", None) or settings.archive
    if archive is None:
        raise CliError(
            "No archive directory given (use --archive or set tool.metrics_history.archive).",
            category="usage",
        )
    archive = Path(archive).expanduser()
    if not archive.is_dir():
        raise CliError(
            f"Archive directory not found: {archive}",
            category="not_found",
            context={"archive": archive},
        )
    return archive


def load_hours(namespace: argparse.Namespace, config: Mapping[str, Any]) -> dict[str, Any]:
    """Replay the requested hours and collect buffers and failures."""

    settings = HistorySettings.from_config(config)
    archive = _resolve_archive(namespace, settings)
    hours = namespace.hours if namespace.hours is not None else settings.initial_hours
    if hours < 1:
        raise CliError("--hours must be at least 1", category="usage", context={"hours": hours})

    # every requested hour must stay cached until the output is built
    max_hours = settings.max_cached_hours and max(settings.max_cached_hours, hours)
    cache = HourWindowCache(
        ArchiveReplaySource(archive),
        detectors=settings.detectors(),
        max_hours=max_hours,
    )
    timeline = HistoryTimeline(cache, now_ms=namespace.hour, initial_hours=hours)
    timeline.open()

    buffers = []
    failures = []
    for hour, buffer in timeline.snapshot():
        if buffer is not None and cache.state(hour) is LoadState.COMPLETE:
            buffers.append(buffer)
            continue
        error = cache.error(hour)
        failure = (
            CliError.from_load_error(error)
            if error is not None
            else CliError.unfinished(hour, cache.state(hour).value)
        )
        failures.append(failure.payload.as_dict())
    cache.close()

    if not buffers:
        categories = {failure["category"] for failure in failures}
        raise CliError(
            "No metrics data for the requested hours.",
            category=categories.pop() if len(categories) == 1 else "not_found",
            context={"archive": archive, "hour": timeline.start, "hours": hours},
        )
    return {"hours": buffers, "failures": failures}


def _render(results: dict[str, Any], export: str) -> str:
    exporter = exporters_registry[export]
    return exporter(results)


def _handle_show(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    return _render(load_hours(namespace, config), namespace.export)


def _handle_events(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    return _render(load_hours(namespace, config), "events")
