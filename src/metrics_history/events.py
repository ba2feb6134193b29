"""Spike detection over completed hour buffers.

Each detector is an independent forward scan over one derived series: it
remembers the previous known value and emits an event whenever the series
jumps up by more than its threshold.  ``NO_DATA`` slots are skipped and do
not reset the previous value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Sequence

import numpy as np

from .channels import MSEC_PER_MINUTE, TICKS_PER_MINUTE
from .normalizer import SERIES_NAMES

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only.
    from .buffer import HourBuffer

__all__ = [
    "CPU_LOAD_SPIKES",
    "DEFAULT_DETECTORS",
    "DEFAULT_SPIKE_THRESHOLD",
    "SWAP_SPIKES",
    "SpikeDetector",
    "SpikeEvent",
    "detect_events",
    "scan_spikes",
]


DEFAULT_SPIKE_THRESHOLD = 0.25


@dataclass(frozen=True, slots=True)
class SpikeEvent:
    """A sharp upward change inside one hour."""

    timestamp: int
    minute: int
    tick: int
    category: str
    series: str
    delta: float


def scan_spikes(values: Sequence[float] | np.ndarray, threshold: float) -> list[tuple[int, float]]:
    """Return ``(tick, delta)`` for every rise larger than ``threshold``."""

    hits: list[tuple[int, float]] = []
    previous = 0.0
    for tick, value in enumerate(np.asarray(values, dtype=np.float64)):
        if np.isnan(value):
            continue
        delta = float(value) - previous
        if delta > threshold:
            hits.append((tick, delta))
        previous = float(value)
    return hits


@dataclass(frozen=True, slots=True)
class SpikeDetector:
    """Slope-threshold detector bound to one derived series."""

    series: str
    category: str
    threshold: float = DEFAULT_SPIKE_THRESHOLD

    def __post_init__(self) -> None:
        if self.series not in SERIES_NAMES:
            raise ValueError(f"Unknown series {self.series!r}")

    def scan(self, buffer: "HourBuffer") -> list[SpikeEvent]:
        events: list[SpikeEvent] = []
        for tick, delta in scan_spikes(buffer.series(self.series), self.threshold):
            minute = tick // TICKS_PER_MINUTE
            events.append(
                SpikeEvent(
                    timestamp=buffer.hour_epoch + minute * MSEC_PER_MINUTE,
                    minute=minute,
                    tick=tick,
                    category=self.category,
                    series=self.series,
                    delta=delta,
                )
            )
        return events


SWAP_SPIKES = SpikeDetector(series="memory_saturation", category="swap")
CPU_LOAD_SPIKES = SpikeDetector(series="cpu_saturation", category="cpu-load")

DEFAULT_DETECTORS: tuple[SpikeDetector, ...] = (SWAP_SPIKES,)


def detect_events(
    buffer: "HourBuffer", detectors: Iterable[SpikeDetector] = DEFAULT_DETECTORS
) -> tuple[SpikeEvent, ...]:
    """Run every detector over ``buffer`` and merge the events by tick."""

    events: list[SpikeEvent] = []
    for detector in detectors:
        events.extend(detector.scan(buffer))
    events.sort(key=lambda event: event.tick)
    return tuple(events)
