"""Range of hours shown by a history view and what triggers their loads."""

from __future__ import annotations

import time
from typing import Iterator

from .buffer import HourBuffer
from .cache import HourWindowCache, LoadState
from .channels import MSEC_PER_HOUR, hour_epoch

__all__ = ["HistoryTimeline"]


def _now_ms() -> int:
    return int(time.time() * 1000)


class HistoryTimeline:
    """Newest-first run of hours backed by a :class:`HourWindowCache`.

    The timeline starts at the current hour.  :meth:`open` requests the
    initial hours; every further hour is only loaded on an explicit
    :meth:`load_earlier` call, which also retries an hour that failed.
    """

    def __init__(
        self,
        cache: HourWindowCache,
        *,
        now_ms: int | float | None = None,
        initial_hours: int = 2,
    ) -> None:
        if initial_hours < 1:
            raise ValueError("initial_hours must be >= 1")
        self._cache = cache
        self._start = hour_epoch(_now_ms() if now_ms is None else now_ms)
        self._count = int(initial_hours)

    @property
    def start(self) -> int:
        """Epoch of the newest (current) hour."""

        return self._start

    @property
    def earliest(self) -> int:
        return self._start - (self._count - 1) * MSEC_PER_HOUR

    def hours(self) -> list[int]:
        return [self._start - index * MSEC_PER_HOUR for index in range(self._count)]

    def open(self) -> dict[int, LoadState]:
        return {hour: self._cache.request(hour) for hour in self.hours()}

    def load_earlier(self) -> int:
        """Extend the range one hour back and request that hour.

        Hours inside the range that failed are requested again as well.
        Returns the epoch of the newly added hour.
        """

        for hour in self.hours():
            if self._cache.state(hour) in (LoadState.FAILED, LoadState.ABSENT):
                self._cache.request(hour)
        self._count += 1
        hour = self.earliest
        self._cache.request(hour)
        return hour

    def snapshot(self) -> Iterator[tuple[int, HourBuffer | None]]:
        for hour in self.hours():
            yield hour, self._cache.get(hour)
