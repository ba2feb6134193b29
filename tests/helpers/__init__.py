"""Convenience re-exports for test helpers."""

from __future__ import annotations

from tests.helpers.frames import (
    FULL_SAMPLE,
    build_metadata,
    build_sample,
    write_recording,
)
from tests.helpers.sources import RecordingSource, RecordingSubscription

__all__ = [
    "FULL_SAMPLE",
    "RecordingSource",
    "RecordingSubscription",
    "build_metadata",
    "build_sample",
    "write_recording",
]
