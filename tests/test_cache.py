"""Tests for the demand-loaded hour window cache."""

from __future__ import annotations

import logging

import numpy as np
import pytest

from metrics_history.cache import HourWindowCache, LoadState
from metrics_history.errors import EmptyLoadError, MalformedFrameError, ProblemCloseError
from metrics_history.events import CPU_LOAD_SPIKES, SWAP_SPIKES

from tests.conftest import HOUR
from tests.helpers import FULL_SAMPLE, RecordingSource, build_metadata, build_sample

HOUR_MS = 3_600_000


def _deliver(subscription, hour: int, samples) -> None:
    subscription.frame(build_metadata(hour))
    subscription.frame(samples)
    subscription.finish(None)


@pytest.fixture
def source() -> RecordingSource:
    return RecordingSource()


@pytest.fixture
def cache(source: RecordingSource) -> HourWindowCache:
    return HourWindowCache(source)


def test_request_opens_one_subscription_per_hour(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    assert cache.state(hour) is LoadState.ABSENT
    assert cache.request(hour + 1_234) is LoadState.LOADING
    assert cache.request(hour) is LoadState.LOADING
    assert cache.request(hour + HOUR_MS - 1) is LoadState.LOADING

    assert len(source.subscriptions) == 1
    request = source.subscriptions[0].request
    assert request.timestamp == hour
    assert request.limit == 720
    assert hour in cache
    assert "hour" not in cache


def test_completed_hour_is_not_reloaded(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    cache.request(hour)
    _deliver(source.latest(hour), hour, [list(FULL_SAMPLE)])

    assert cache.state(hour) is LoadState.COMPLETE
    assert cache.request(hour) is LoadState.COMPLETE
    assert len(source.subscriptions) == 1
    buffer = cache.get(hour)
    assert buffer is not None and buffer.complete
    assert buffer.cpu_utilization[0] == pytest.approx(0.03)


def test_observers_hear_each_completion_once(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    seen = []
    unsubscribe = cache.subscribe(lambda key, buffer: seen.append((key, buffer.samples)))

    cache.request(hour)
    subscription = source.latest(hour)
    _deliver(subscription, hour, [list(FULL_SAMPLE)] * 2)
    subscription.listener.on_close(None)

    assert seen == [(hour, 2)]

    unsubscribe()
    cache.request(hour - HOUR_MS)
    _deliver(source.latest(hour - HOUR_MS), hour - HOUR_MS, [list(FULL_SAMPLE)])
    assert seen == [(hour, 2)]


def test_snapshot_while_loading(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    assert cache.get(hour) is None
    cache.request(hour)
    assert np.isnan(cache.get(hour).cpu_utilization).all()

    subscription = source.latest(hour)
    subscription.frame(build_metadata(hour))
    subscription.frame([list(FULL_SAMPLE)])

    snapshot = cache.get(hour)
    assert snapshot.complete is False
    assert snapshot.cpu_utilization[0] == pytest.approx(0.03)
    assert np.isnan(snapshot.cpu_utilization[1:]).all()


def test_empty_stream_marks_hour_failed(cache: HourWindowCache, source: RecordingSource, hour: int, caplog) -> None:
    failures = []
    cache.subscribe_failures(lambda key, error: failures.append((key, error)))
    completions = []
    cache.subscribe(lambda key, buffer: completions.append(key))

    cache.request(hour)
    subscription = source.latest(hour)
    subscription.frame(build_metadata(hour))
    with caplog.at_level(logging.WARNING, logger="metrics_history"):
        subscription.finish(None)

    assert cache.state(hour) is LoadState.FAILED
    assert isinstance(cache.error(hour), EmptyLoadError)
    assert cache.get(hour) is None
    assert completions == []
    assert failures == [(hour, cache.error(hour))]
    record = next(item for item in caplog.records if getattr(item, "event", None) == "history.load_failed")
    assert record.category == "empty"
    assert record.hour == hour


def test_problem_close_marks_hour_failed(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    cache.request(hour)
    subscription = source.latest(hour)
    subscription.frame(build_metadata(hour))
    subscription.frame([list(FULL_SAMPLE)])
    subscription.finish("access-denied")

    error = cache.error(hour)
    assert isinstance(error, ProblemCloseError)
    assert error.problem == "access-denied"
    assert error.as_dict()["hour"] == hour


def test_malformed_frame_closes_subscription(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    cache.request(hour)
    subscription = source.latest(hour)
    subscription.frame([list(FULL_SAMPLE)])

    assert subscription.closed
    assert cache.state(hour) is LoadState.FAILED
    assert isinstance(cache.error(hour), MalformedFrameError)


def test_failed_hour_is_retried_on_request(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    cache.request(hour)
    source.latest(hour).finish("timeout")
    assert cache.state(hour) is LoadState.FAILED

    assert cache.request(hour) is LoadState.LOADING
    assert len(source.opened_for(hour)) == 2
    assert cache.error(hour) is None

    _deliver(source.latest(hour), hour, [list(FULL_SAMPLE)])
    assert cache.state(hour) is LoadState.COMPLETE


def test_stale_subscription_is_ignored(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    cache.request(hour)
    stale = source.latest(hour)
    assert cache.cancel(hour)
    assert stale.closed

    cache.request(hour)
    # the first listener must not touch the new entry
    stale.listener.on_frame(build_metadata(hour))
    stale.listener.on_frame([list(FULL_SAMPLE)])
    stale.listener.on_close(None)

    assert cache.state(hour) is LoadState.LOADING
    assert len(source.opened_for(hour)) == 2


def test_cancel_discards_partial_data(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    cache.request(hour)
    subscription = source.latest(hour)
    subscription.frame(build_metadata(hour))
    subscription.frame([list(FULL_SAMPLE)])

    assert cache.cancel(hour)
    assert cache.state(hour) is LoadState.ABSENT
    assert cache.get(hour) is None
    assert cache.cancel(hour) is False


def test_close_cancels_every_loading_hour(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    for offset in range(3):
        cache.request(hour - offset * HOUR_MS)
    _deliver(source.latest(hour), hour, [list(FULL_SAMPLE)])

    cache.close()

    assert list(cache) == [hour]
    assert all(item.closed for item in source.subscriptions)


def test_swap_events_attached_to_completed_buffer(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    cache.request(hour)
    samples = [list(FULL_SAMPLE), build_sample(swap=5), build_sample(swap=0), build_sample(swap=5000)]
    _deliver(source.latest(hour), hour, samples)

    events = cache.events(hour)
    assert [(event.tick, event.category) for event in events] == [(1, "swap"), (3, "swap")]
    assert cache.get(hour).events == events
    assert cache.events(hour - HOUR_MS) == ()


def test_custom_detectors(source: RecordingSource, hour: int) -> None:
    cache = HourWindowCache(source, detectors=(SWAP_SPIKES, CPU_LOAD_SPIKES))
    cache.request(hour)
    _deliver(source.latest(hour), hour, [list(FULL_SAMPLE), build_sample(load=[0, 9.0, 0])])

    assert [event.category for event in cache.events(hour)] == ["cpu-load"]


def test_eviction_keeps_most_recently_used(source: RecordingSource, hour: int) -> None:
    cache = HourWindowCache(source, max_hours=2)
    hours = [hour - offset * HOUR_MS for offset in range(3)]
    for key in hours[:2]:
        cache.request(key)
        _deliver(source.latest(key), key, [list(FULL_SAMPLE)])

    cache.get(hours[0])
    cache.request(hours[2])
    _deliver(source.latest(hours[2]), hours[2], [list(FULL_SAMPLE)])

    assert cache.state(hours[0]) is LoadState.COMPLETE
    assert cache.state(hours[1]) is LoadState.ABSENT
    assert cache.state(hours[2]) is LoadState.COMPLETE


def test_negative_max_hours_rejected(source: RecordingSource) -> None:
    with pytest.raises(ValueError):
        HourWindowCache(source, max_hours=-1)


def test_open_failure_leaves_hour_absent(hour: int) -> None:
    class _Broken:
        def open(self, request, listener):
            raise OSError("archive offline")

    cache = HourWindowCache(_Broken())
    with pytest.raises(OSError):
        cache.request(hour)
    assert cache.state(hour) is LoadState.ABSENT


@pytest.mark.parametrize(
    "frames",
    [
        ['{"timestamp": NaN}'],
        ['{"timestamp": Infinity}'],
        [build_metadata(HOUR), "[[" + "7" * 400 + "]]"],
    ],
)
def test_unrepresentable_numbers_fail_the_hour(
    cache: HourWindowCache, source: RecordingSource, hour: int, frames
) -> None:
    cache.request(hour)
    subscription = source.latest(hour)
    for frame in frames:
        subscription.frame(frame)

    assert subscription.closed
    assert cache.state(hour) is LoadState.FAILED
    assert cache.error(hour).category == "malformed"


def test_hours_may_complete_out_of_order(cache: HourWindowCache, source: RecordingSource, hour: int) -> None:
    earlier = hour - HOUR_MS
    seen = []
    cache.subscribe(lambda key, buffer: seen.append(key))

    cache.request(earlier)
    cache.request(hour)
    _deliver(source.latest(hour), hour, [list(FULL_SAMPLE)])
    assert cache.state(earlier) is LoadState.LOADING

    _deliver(source.latest(earlier), earlier, [list(FULL_SAMPLE)] * 2)

    assert cache.state(hour) is LoadState.COMPLETE
    assert cache.state(earlier) is LoadState.COMPLETE
    assert seen == [hour, earlier]
    assert cache.get(earlier).samples == 2


def test_retry_logs_previous_failure_category(
    cache: HourWindowCache, source: RecordingSource, hour: int, caplog
) -> None:
    cache.request(hour)
    source.latest(hour).finish("timeout")

    with caplog.at_level(logging.INFO, logger="metrics_history"):
        cache.request(hour)

    record = next(item for item in caplog.records if getattr(item, "event", None) == "history.retry")
    assert record.category == "problem"
