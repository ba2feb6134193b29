"""Exporter registry for hour buffers."""

from __future__ import annotations

import csv
import json
import math
from dataclasses import asdict
from io import StringIO
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Protocol

from .buffer import HourBuffer
from .normalizer import SERIES_NAMES

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only.
    import pandas as pd

__all__ = [
    "Exporter",
    "csv_exporter",
    "events_exporter",
    "exporters_registry",
    "json_exporter",
    "serialise_hour",
    "to_dataframe",
]

_PANDAS: Any | None = None


def _get_pandas() -> Any:
    global _PANDAS
    if _PANDAS is None:
        import pandas as _pd

        _PANDAS = _pd
    return _PANDAS


class Exporter(Protocol):
    """Exporter callable protocol."""

    def __call__(self, results: Dict[str, Any]) -> str:  # pragma: no cover - interface only
        ...


def _clean(value: float) -> float | None:
    return None if math.isnan(value) else float(value)


def _hours(results: Mapping[str, Any]) -> Iterable[HourBuffer]:
    for hour in results.get("hours", []):
        if isinstance(hour, HourBuffer):
            yield hour


def serialise_hour(buffer: HourBuffer) -> dict[str, Any]:
    """Plain-data view of ``buffer``; ``NO_DATA`` slots become ``None``."""

    return {
        "hour": buffer.hour_epoch,
        "samples": buffer.samples,
        "complete": buffer.complete,
        "series": {name: [_clean(value) for value in values] for name, values in buffer.items()},
        "events": [asdict(event) for event in buffer.events],
    }


def json_exporter(results: Dict[str, Any]) -> str:
    payload = {
        "hours": [serialise_hour(buffer) for buffer in _hours(results)],
        "failures": list(results.get("failures", [])),
    }
    return json.dumps(payload, indent=2, sort_keys=True)


def csv_exporter(results: Dict[str, Any]) -> str:
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(("timestamp",) + SERIES_NAMES)
    for buffer in _hours(results):
        columns = [buffer.series(name) for name in SERIES_NAMES]
        for tick, timestamp in enumerate(buffer.timestamps()):
            row = [int(timestamp)]
            for values in columns:
                cleaned = _clean(values[tick])
                row.append("" if cleaned is None else f"{cleaned:.6g}")
            writer.writerow(row)
    return output.getvalue().rstrip("\n")


def events_exporter(results: Dict[str, Any]) -> str:
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(("timestamp", "minute", "tick", "category", "series", "delta"))
    for buffer in _hours(results):
        for event in buffer.events:
            writer.writerow(
                (
                    event.timestamp,
                    event.minute,
                    event.tick,
                    event.category,
                    event.series,
                    f"{event.delta:.3f}",
                )
            )
    return output.getvalue().rstrip("\n")


def to_dataframe(buffer: HourBuffer) -> "pd.DataFrame":
    """Return ``buffer`` as a :class:`~pandas.DataFrame` indexed by time."""

    pd = _get_pandas()
    index = pd.to_datetime(buffer.timestamps(), unit="ms", utc=True)
    frame = pd.DataFrame({name: values for name, values in buffer.items()}, index=index)
    frame.index.name = "timestamp"
    return frame


exporters_registry: Dict[str, Exporter] = {
    "json": json_exporter,
    "csv": csv_exporter,
    "events": events_exporter,
}
