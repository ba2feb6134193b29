"""Fixed-size per-hour containers for the derived series.

Every hour is sampled every 5 seconds, giving exactly 720 slots per series.
The builder preallocates the storage once and fills it in place while a
stream is being decoded; :meth:`HourBufferBuilder.finalize` freezes the
arrays into an immutable :class:`HourBuffer`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Iterator

import numpy as np

from .channels import MSEC_PER_MINUTE, TICK_MS, TICKS_PER_HOUR, TICKS_PER_MINUTE
from .normalizer import NO_DATA, SERIES_NAMES, DerivedSample

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only.
    from .events import SpikeEvent

__all__ = ["HourBuffer", "HourBufferBuilder"]


logger = logging.getLogger(__name__)


def _frozen(values: np.ndarray) -> np.ndarray:
    values.setflags(write=False)
    return values


@dataclass(frozen=True)
class HourBuffer:
    """Completed (or snapshot of a loading) hour of derived series."""

    hour_epoch: int
    cpu_utilization: np.ndarray
    cpu_saturation: np.ndarray
    memory_utilization: np.ndarray
    memory_saturation: np.ndarray
    samples: int = 0
    complete: bool = True
    events: tuple["SpikeEvent", ...] = field(default=())

    def series(self, name: str) -> np.ndarray:
        if name not in SERIES_NAMES:
            raise KeyError(f"Unknown series {name!r}")
        return getattr(self, name)

    def items(self) -> Iterator[tuple[str, np.ndarray]]:
        for name in SERIES_NAMES:
            yield name, getattr(self, name)

    def timestamps(self) -> np.ndarray:
        """Absolute millisecond timestamp of every slot."""

        return self.hour_epoch + np.arange(TICKS_PER_HOUR, dtype=np.int64) * TICK_MS

    def minute(self, name: str, minute: int) -> np.ndarray:
        """Return the 12 slots of ``minute`` for series ``name``."""

        if not 0 <= minute < TICKS_PER_HOUR // TICKS_PER_MINUTE:
            raise IndexError(f"minute {minute} outside of the hour")
        offset = minute * TICKS_PER_MINUTE
        return self.series(name)[offset : offset + TICKS_PER_MINUTE]

    def minute_is_blank(self, minute: int) -> bool:
        """``True`` when every series starts and ends ``minute`` without data."""

        for name in SERIES_NAMES:
            values = self.minute(name, minute)
            if not (np.isnan(values[0]) and np.isnan(values[-1])):
                return False
        return True

    def minute_timestamp(self, minute: int) -> int:
        return self.hour_epoch + minute * MSEC_PER_MINUTE

    @property
    def has_data(self) -> bool:
        return any(bool(np.any(~np.isnan(values))) for _, values in self.items())


class HourBufferBuilder:
    """Accumulates derived samples for one hour while its stream is open."""

    __slots__ = ("_hour_epoch", "_columns", "_cursor", "_samples", "_dropped")

    def __init__(self, hour_epoch: int) -> None:
        self._hour_epoch = int(hour_epoch)
        self._columns = np.full((len(SERIES_NAMES), TICKS_PER_HOUR), NO_DATA, dtype=np.float64)
        self._cursor = 0
        self._samples = 0
        self._dropped = 0

    @property
    def hour_epoch(self) -> int:
        return self._hour_epoch

    @property
    def ticks(self) -> int:
        """Number of slots filled so far, gap fill included."""

        return self._cursor

    @property
    def samples(self) -> int:
        """Number of decoded data samples received, dropped ones included."""

        return self._samples

    @property
    def dropped(self) -> int:
        return self._dropped

    def fill_gap(self, gap_ticks: int) -> None:
        """Pre-fill the leading gap before the first archived sample.

        Whole minutes of the gap stay :data:`NO_DATA`; the remaining partial
        minute is filled with zeros so that no minute is only partly blank.
        """

        if self._cursor:
            raise RuntimeError("gap fill must happen before any sample")
        gap_ticks = max(0, min(int(gap_ticks), TICKS_PER_HOUR))
        gap_minutes = (gap_ticks // TICKS_PER_MINUTE) * TICKS_PER_MINUTE
        self._columns[:, gap_minutes:gap_ticks] = 0.0
        self._cursor = gap_ticks

    def append(self, sample: DerivedSample) -> bool:
        """Store ``sample`` in the next slot; ``False`` once the hour is full."""

        self._samples += 1
        if self._cursor >= TICKS_PER_HOUR:
            self._dropped += 1
            logger.debug(
                "Dropping sample past the end of the hour",
                extra={"event": "history.sample_dropped", "hour": self._hour_epoch},
            )
            return False
        self._columns[:, self._cursor] = sample
        self._cursor += 1
        return True

    def _build(self, *, complete: bool) -> HourBuffer:
        # slots after the cursor are still NO_DATA, which is the right padding
        columns = self._columns.copy()
        return HourBuffer(
            self._hour_epoch,
            *(_frozen(columns[index]) for index in range(len(SERIES_NAMES))),
            samples=self._samples,
            complete=complete,
        )

    def snapshot(self) -> HourBuffer:
        """Return a padded, read-only view of the partial hour."""

        return self._build(complete=False)

    def finalize(self) -> HourBuffer:
        return self._build(complete=True)
