"""Decompression of metrics archive frames.

The archive omits every channel value that did not change since the
previous sample (``null`` in the JSON payload).  Decoding therefore keeps a
"last known" vector per stream: :class:`CarryForwardState` is that vector,
modelled as an immutable value so a decoding step can be tested in
isolation from the stream that drives it.

A stream starts with a single metadata object describing when the first
archived sample was taken, followed by data frames that are JSON arrays of
samples::

    {"timestamp": 1700000015000, "interval": 5000, ...}
    [[10, 10, 10, [0.4, 1.2, 0.9], 8000000000, 4000000000, 0]]
    [[null, 12, null, null, null, 3900000000, null], ...]
"""

from __future__ import annotations

from collections.abc import Mapping as ABCMapping, Sequence as ABCSequence
from dataclasses import dataclass
import json
import logging
import math
from typing import Any, Iterable, Mapping, Sequence, Union

from .buffer import HourBufferBuilder
from .channels import CHANNEL_COUNT, LOAD, LOAD_1MIN_INDEX, TICK_MS
from .errors import MalformedFrameError
from .normalizer import DerivedSample, normalize

__all__ = [
    "CarryForwardState",
    "Frame",
    "SampleFrameDecoder",
    "decode_samples",
    "gap_ticks",
    "parse_frame",
]


logger = logging.getLogger(__name__)

Frame = Union[str, bytes, Mapping[str, Any], Sequence[Any]]


def _coerce_scalar(value: Any, channel: int) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedFrameError(
            f"channel {channel} carries a non-numeric value",
            context={"channel": channel, "value": value},
        )
    try:
        numeric = float(value)
    except OverflowError as exc:
        raise MalformedFrameError(
            f"channel {channel} carries a value out of range",
            context={"channel": channel},
        ) from exc
    if not math.isfinite(numeric):
        raise MalformedFrameError(
            f"channel {channel} carries a non-finite value",
            context={"channel": channel, "value": value},
        )
    return numeric


def _load_component(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, (str, bytes)) or not isinstance(value, ABCSequence):
        raise MalformedFrameError(
            "load channel must carry an instance array",
            context={"channel": LOAD, "value": value},
        )
    if len(value) <= LOAD_1MIN_INDEX or value[LOAD_1MIN_INDEX] is None:
        return None
    return _coerce_scalar(value[LOAD_1MIN_INDEX], LOAD)


@dataclass(frozen=True, slots=True)
class CarryForwardState:
    """Last known value of every channel; ``None`` until first delivered."""

    values: tuple[float | None, ...] = (None,) * CHANNEL_COUNT

    def __getitem__(self, index: int) -> float | None:
        return self.values[index]

    def __len__(self) -> int:
        return len(self.values)

    def update(self, sample: Any) -> "CarryForwardState":
        """Return the state after applying one compressed ``sample``.

        Trailing channels omitted from ``sample`` are treated like explicit
        ``null`` entries and keep their previous value.
        """

        if isinstance(sample, (str, bytes)) or not isinstance(sample, ABCSequence):
            raise MalformedFrameError(
                "sample must be an array of channel values",
                context={"sample": sample},
            )
        if len(sample) > CHANNEL_COUNT:
            raise MalformedFrameError(
                f"sample carries {len(sample)} channels (expected {CHANNEL_COUNT})",
                context={"channels": len(sample)},
            )
        current = list(self.values)
        for index, value in enumerate(sample):
            if index == LOAD:
                # only the 1-minute instance of the load tuple is tracked
                updated = _load_component(value)
            elif value is None:
                updated = None
            else:
                updated = _coerce_scalar(value, index)
            if updated is not None:
                current[index] = updated
        return CarryForwardState(tuple(current))


def parse_frame(frame: Frame) -> Any:
    """Decode a raw JSON frame; already parsed payloads pass through."""

    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedFrameError("frame is not valid UTF-8") from exc
    if isinstance(frame, str):
        try:
            return json.loads(frame)
        except json.JSONDecodeError as exc:
            raise MalformedFrameError(
                "frame is not valid JSON", context={"error": exc.msg}
            ) from exc
    return frame


def _metadata_timestamp(payload: ABCMapping[str, Any]) -> float:
    timestamp = payload.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise MalformedFrameError(
            "metadata frame lacks a numeric timestamp",
            context={"timestamp": timestamp},
        )
    try:
        numeric = float(timestamp)
    except OverflowError as exc:
        raise MalformedFrameError("metadata timestamp out of range") from exc
    if not math.isfinite(numeric):
        raise MalformedFrameError(
            "metadata timestamp is not finite", context={"timestamp": timestamp}
        )
    return numeric


def gap_ticks(requested_ms: int, first_sample_ms: int | float) -> int:
    """Number of whole ticks between the requested and the first real sample."""

    return max(0, math.floor((first_sample_ms - requested_ms) / TICK_MS))


class SampleFrameDecoder:
    """Drive one hour's frames into an :class:`HourBufferBuilder`."""

    __slots__ = ("_builder", "_state", "_metadata")

    def __init__(self, builder: HourBufferBuilder, state: CarryForwardState | None = None) -> None:
        self._builder = builder
        self._state = state or CarryForwardState()
        self._metadata: ABCMapping[str, Any] | None = None

    @property
    def builder(self) -> HourBufferBuilder:
        return self._builder

    @property
    def state(self) -> CarryForwardState:
        return self._state

    @property
    def metadata(self) -> ABCMapping[str, Any] | None:
        return self._metadata

    def feed(self, frame: Frame) -> int:
        """Process one frame and return how many samples it contributed."""

        payload = parse_frame(frame)
        if isinstance(payload, ABCMapping):
            self._apply_metadata(payload)
            return 0
        if isinstance(payload, (str, bytes)) or not isinstance(payload, ABCSequence):
            raise MalformedFrameError(
                "frame is neither a metadata object nor a sample batch",
                context={"type": type(payload).__name__},
            )
        if self._metadata is None:
            raise MalformedFrameError("data frame received before the metadata frame")
        return self._apply_samples(payload)

    def _apply_metadata(self, payload: ABCMapping[str, Any]) -> None:
        if self._metadata is not None:
            raise MalformedFrameError("duplicate metadata frame")
        timestamp = _metadata_timestamp(payload)
        self._metadata = payload
        # the first datum may not be at the requested timestamp
        gap = gap_ticks(self._builder.hour_epoch, timestamp)
        self._builder.fill_gap(gap)
        if gap:
            logger.debug(
                "Archive starts %d ticks into the hour",
                gap,
                extra={"event": "history.gap", "hour": self._builder.hour_epoch, "ticks": gap},
            )

    def _apply_samples(self, samples: Iterable[Any]) -> int:
        count = 0
        for sample in samples:
            self._state = self._state.update(sample)
            self._builder.append(normalize(self._state.values))
            count += 1
        return count


def decode_samples(
    samples: Iterable[Any], state: CarryForwardState | None = None
) -> tuple[list[DerivedSample], CarryForwardState]:
    """Decode a plain sample batch without a buffer (handy for inspection)."""

    current = state or CarryForwardState()
    derived: list[DerivedSample] = []
    for sample in samples:
        current = current.update(sample)
        derived.append(normalize(current.values))
    return derived, current
