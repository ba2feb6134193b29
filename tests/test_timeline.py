"""Tests for the history timeline."""

from __future__ import annotations

import pytest

from metrics_history.cache import HourWindowCache, LoadState
from metrics_history.timeline import HistoryTimeline

from tests.helpers import FULL_SAMPLE, RecordingSource, build_metadata

HOUR_MS = 3_600_000


def _complete(source: RecordingSource, hour: int) -> None:
    subscription = source.latest(hour)
    subscription.frame(build_metadata(hour))
    subscription.frame([list(FULL_SAMPLE)])
    subscription.finish(None)


def test_open_requests_the_initial_hours(hour: int) -> None:
    source = RecordingSource()
    timeline = HistoryTimeline(HourWindowCache(source), now_ms=hour + 1_800_000)

    states = timeline.open()

    assert timeline.start == hour
    assert timeline.hours() == [hour, hour - HOUR_MS]
    assert timeline.earliest == hour - HOUR_MS
    assert states == {hour: LoadState.LOADING, hour - HOUR_MS: LoadState.LOADING}
    assert [item.request.timestamp for item in source.subscriptions] == [hour, hour - HOUR_MS]


def test_load_earlier_extends_range_by_one(hour: int) -> None:
    source = RecordingSource()
    timeline = HistoryTimeline(HourWindowCache(source), now_ms=hour)
    timeline.open()

    added = timeline.load_earlier()

    assert added == hour - 2 * HOUR_MS
    assert timeline.hours() == [hour, hour - HOUR_MS, hour - 2 * HOUR_MS]
    # loading hours are not requested twice
    assert len(source.subscriptions) == 3


def test_load_earlier_retries_failed_hours(hour: int) -> None:
    source = RecordingSource()
    cache = HourWindowCache(source)
    timeline = HistoryTimeline(cache, now_ms=hour)
    timeline.open()
    _complete(source, hour)
    source.latest(hour - HOUR_MS).finish("timeout")

    timeline.load_earlier()

    assert len(source.opened_for(hour)) == 1
    assert len(source.opened_for(hour - HOUR_MS)) == 2
    assert cache.state(hour - HOUR_MS) is LoadState.LOADING


def test_snapshot_pairs_hours_with_buffers(hour: int) -> None:
    source = RecordingSource()
    timeline = HistoryTimeline(HourWindowCache(source), now_ms=hour, initial_hours=3)
    timeline.open()
    _complete(source, hour)
    source.latest(hour - 2 * HOUR_MS).finish("not-found")

    snapshot = dict(timeline.snapshot())

    assert snapshot[hour].complete
    assert snapshot[hour - HOUR_MS].complete is False
    assert snapshot[hour - 2 * HOUR_MS] is None


def test_initial_hours_must_be_positive(hour: int) -> None:
    with pytest.raises(ValueError):
        HistoryTimeline(HourWindowCache(RecordingSource()), now_ms=hour, initial_hours=0)
