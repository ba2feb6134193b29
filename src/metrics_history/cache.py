"""Demand-loaded cache of hour windows.

The cache owns every :class:`~metrics_history.buffer.HourBuffer`.  Each
hour key goes through ``ABSENT -> LOADING -> {COMPLETE | FAILED}``; at most
one subscription is outstanding per key, completed hours are signalled to
observers exactly once, and failed hours are only retried when a caller
requests them again.

Everything runs on a single event loop: requests and stream callbacks are
handled one at a time, so no locking is involved.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
import enum
import logging
from typing import Callable, Iterable, Iterator

from .buffer import HourBuffer
from .channels import SubscriptionRequest, hour_epoch
from .errors import LoadError
from .events import DEFAULT_DETECTORS, SpikeDetector, SpikeEvent, detect_events
from .stream import HourLoad, MetricsSource

__all__ = ["HourWindowCache", "LoadState"]


logger = logging.getLogger(__name__)

ChangeCallback = Callable[[int, HourBuffer], None]
FailureCallback = Callable[[int, LoadError], None]


class LoadState(enum.Enum):
    ABSENT = "absent"
    LOADING = "loading"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class _Entry:
    state: LoadState
    load: HourLoad | None = None
    buffer: HourBuffer | None = None
    error: LoadError | None = None


class HourWindowCache:
    """Keyed store of hour buffers populated through a :class:`MetricsSource`."""

    def __init__(
        self,
        source: MetricsSource,
        *,
        detectors: Iterable[SpikeDetector] = DEFAULT_DETECTORS,
        max_hours: int = 0,
    ) -> None:
        if max_hours < 0:
            raise ValueError("max_hours must be >= 0")
        self._source = source
        self._detectors = tuple(detectors)
        self._max_hours = int(max_hours)
        self._entries: "OrderedDict[int, _Entry]" = OrderedDict()
        self._observers: list[ChangeCallback] = []
        self._failure_observers: list[FailureCallback] = []

    @property
    def max_hours(self) -> int:
        return self._max_hours

    @property
    def detectors(self) -> tuple[SpikeDetector, ...]:
        return self._detectors

    def __contains__(self, timestamp: object) -> bool:
        if not isinstance(timestamp, (int, float)):
            return False
        return hour_epoch(timestamp) in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._entries))

    def state(self, timestamp: int | float) -> LoadState:
        entry = self._entries.get(hour_epoch(timestamp))
        return entry.state if entry is not None else LoadState.ABSENT

    def error(self, timestamp: int | float) -> LoadError | None:
        entry = self._entries.get(hour_epoch(timestamp))
        if entry is None or entry.state is not LoadState.FAILED:
            return None
        return entry.error

    def request(self, timestamp: int | float) -> LoadState:
        """Start loading the hour containing ``timestamp`` unless it is known.

        Loading and completed hours are left alone.  Absent and failed
        hours get a fresh subscription.
        """

        key = hour_epoch(timestamp)
        entry = self._entries.get(key)
        if entry is not None and entry.state is LoadState.COMPLETE:
            self._entries.move_to_end(key)
            return entry.state
        if entry is not None and entry.state is LoadState.LOADING:
            return entry.state

        if entry is not None:
            category = entry.error.category if entry.error is not None else None
            logger.info(
                "Retrying failed hour",
                extra={"event": "history.retry", "hour": key, "category": category},
            )
        load = HourLoad(key, on_complete=self._handle_complete, on_failure=self._handle_failure)
        entry = _Entry(LoadState.LOADING, load=load)
        self._entries[key] = entry
        logger.debug("Opening metrics subscription", extra={"event": "history.load_started", "hour": key})
        try:
            subscription = self._source.open(SubscriptionRequest.for_hour(key), load)
        except BaseException:
            if self._entries.get(key) is entry:
                del self._entries[key]
            raise
        load.attach(subscription)
        return entry.state

    def get(self, timestamp: int | float) -> HourBuffer | None:
        """Return the buffer of an hour, padded if it is still loading."""

        key = hour_epoch(timestamp)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.state is LoadState.COMPLETE:
            self._entries.move_to_end(key)
            return entry.buffer
        if entry.state is LoadState.LOADING and entry.load is not None:
            return entry.load.snapshot()
        return None

    def events(self, timestamp: int | float) -> tuple[SpikeEvent, ...]:
        entry = self._entries.get(hour_epoch(timestamp))
        if entry is None or entry.buffer is None:
            return ()
        return entry.buffer.events

    def cancel(self, timestamp: int | float) -> bool:
        """Abort an outstanding load; its partial data is discarded."""

        key = hour_epoch(timestamp)
        entry = self._entries.get(key)
        if entry is None or entry.state is not LoadState.LOADING:
            return False
        del self._entries[key]
        if entry.load is not None:
            entry.load.cancel()
        logger.debug("Cancelled metrics subscription", extra={"event": "history.load_cancelled", "hour": key})
        return True

    def close(self) -> None:
        for key in [key for key, entry in self._entries.items() if entry.state is LoadState.LOADING]:
            self.cancel(key)

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register ``callback(hour_epoch, buffer)`` for completed hours."""

        self._observers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _unsubscribe

    def subscribe_failures(self, callback: FailureCallback) -> Callable[[], None]:
        self._failure_observers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._failure_observers:
                self._failure_observers.remove(callback)

        return _unsubscribe

    def _current_entry(self, load: HourLoad) -> _Entry | None:
        entry = self._entries.get(load.hour_epoch)
        if entry is None or entry.load is not load or entry.state is not LoadState.LOADING:
            return None
        return entry

    def _handle_complete(self, load: HourLoad, buffer: HourBuffer) -> None:
        entry = self._current_entry(load)
        if entry is None:
            return
        buffer = replace(buffer, events=detect_events(buffer, self._detectors))
        entry.state = LoadState.COMPLETE
        entry.buffer = buffer
        entry.load = None
        self._entries.move_to_end(load.hour_epoch)
        logger.info(
            "Loaded metrics for hour",
            extra={
                "event": "history.load_complete",
                "hour": load.hour_epoch,
                "samples": buffer.samples,
                "events": len(buffer.events),
            },
        )
        self._evict()
        for callback in list(self._observers):
            callback(load.hour_epoch, buffer)

    def _handle_failure(self, load: HourLoad, error: LoadError) -> None:
        entry = self._current_entry(load)
        if entry is None:
            return
        entry.state = LoadState.FAILED
        entry.error = error
        entry.load = None
        logger.warning(
            "Failed to load metrics: %s",
            error,
            extra={
                "event": "history.load_failed",
                "hour": load.hour_epoch,
                "category": error.category,
                "context": dict(error.context),
            },
        )
        for callback in list(self._failure_observers):
            callback(load.hour_epoch, error)

    def _evict(self) -> None:
        if not self._max_hours:
            return
        completed = [key for key, entry in self._entries.items() if entry.state is LoadState.COMPLETE]
        for key in completed[: max(0, len(completed) - self._max_hours)]:
            del self._entries[key]
            logger.debug("Evicted hour from cache", extra={"event": "history.evicted", "hour": key})
