"""Top-level package for metrics history.

The package decodes the compressed sample streams of a host metrics
archive into fixed 720-slot hour buffers of CPU and memory
utilisation/saturation scores, detects swap spikes in them and keeps a
demand-loaded cache of hour windows for history views.
"""

from ._version import __version__
from .buffer import HourBuffer, HourBufferBuilder
from .cache import HourWindowCache, LoadState
from .channels import (
    CHANNELS,
    TICK_MS,
    TICKS_PER_HOUR,
    TICKS_PER_MINUTE,
    SubscriptionRequest,
    hour_epoch,
)
from .configuration import HistorySettings, load_config
from .decoder import CarryForwardState, SampleFrameDecoder
from .errors import EmptyLoadError, LoadError, MalformedFrameError, ProblemCloseError
from .events import SpikeDetector, SpikeEvent, detect_events
from .normalizer import NO_DATA, DerivedSample, is_no_data, normalize
from .sources import ArchiveReplaySource, AsyncStreamSource, FrameQueue, StreamProblem
from .stream import HourLoad, LoadPhase
from .timeline import HistoryTimeline

__all__ = [
    "ArchiveReplaySource",
    "AsyncStreamSource",
    "CHANNELS",
    "CarryForwardState",
    "DerivedSample",
    "EmptyLoadError",
    "FrameQueue",
    "HistorySettings",
    "HistoryTimeline",
    "HourBuffer",
    "HourBufferBuilder",
    "HourLoad",
    "HourWindowCache",
    "LoadError",
    "LoadPhase",
    "LoadState",
    "MalformedFrameError",
    "NO_DATA",
    "ProblemCloseError",
    "SampleFrameDecoder",
    "SpikeDetector",
    "SpikeEvent",
    "StreamProblem",
    "SubscriptionRequest",
    "TICKS_PER_HOUR",
    "TICKS_PER_MINUTE",
    "TICK_MS",
    "detect_events",
    "hour_epoch",
    "is_no_data",
    "load_config",
    "normalize",
    "__version__",
]
