"""Channel layout and subscription requests for the metrics archive.

The archive stream always carries the same seven channels, in a fixed
order.  Their position inside every sample is significant: the decoder and
the normaliser address channels by index rather than by name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

__all__ = [
    "CHANNELS",
    "CHANNEL_COUNT",
    "ChannelDescriptor",
    "CPU_NICE",
    "CPU_USER",
    "CPU_SYS",
    "LOAD",
    "LOAD_1MIN_INDEX",
    "MEM_TOTAL",
    "MEM_AVAILABLE",
    "SWAP_OUT",
    "MSEC_PER_HOUR",
    "MSEC_PER_MINUTE",
    "SubscriptionRequest",
    "TICK_MS",
    "TICKS_PER_HOUR",
    "TICKS_PER_MINUTE",
    "hour_epoch",
]


MSEC_PER_MINUTE = 60_000
MSEC_PER_HOUR = 3_600_000
TICK_MS = 5_000
TICKS_PER_MINUTE = MSEC_PER_MINUTE // TICK_MS
TICKS_PER_HOUR = MSEC_PER_HOUR // TICK_MS


@dataclass(frozen=True, slots=True)
class ChannelDescriptor:
    """Metric requested from the archive for one sample position."""

    name: str
    derive: str | None = None

    def as_dict(self) -> dict[str, str]:
        payload = {"name": self.name}
        if self.derive is not None:
            payload["derive"] = self.derive
        return payload


CPU_NICE = 0
CPU_USER = 1
CPU_SYS = 2
LOAD = 3
MEM_TOTAL = 4
MEM_AVAILABLE = 5
SWAP_OUT = 6

# kernel.all.load reports the (15min, 1min, 5min) instances in that order
LOAD_1MIN_INDEX = 1

CHANNELS: tuple[ChannelDescriptor, ...] = (
    ChannelDescriptor("kernel.all.cpu.nice", derive="rate"),
    ChannelDescriptor("kernel.all.cpu.user", derive="rate"),
    ChannelDescriptor("kernel.all.cpu.sys", derive="rate"),
    ChannelDescriptor("kernel.all.load"),
    ChannelDescriptor("mem.physmem"),
    # mem.util.used includes the page cache, available is what matters
    ChannelDescriptor("mem.util.available"),
    ChannelDescriptor("swap.pagesout", derive="rate"),
)
CHANNEL_COUNT = len(CHANNELS)


def hour_epoch(timestamp_ms: int | float) -> int:
    """Truncate ``timestamp_ms`` to the start of its hour."""

    return (int(timestamp_ms) // MSEC_PER_HOUR) * MSEC_PER_HOUR


@dataclass(frozen=True, slots=True)
class SubscriptionRequest:
    """Options sent to the stream collaborator when opening one hour."""

    timestamp: int
    interval: int = TICK_MS
    limit: int = TICKS_PER_HOUR
    metrics: tuple[ChannelDescriptor, ...] = field(default=CHANNELS)
    payload: str = "metrics1"
    source: str = "pcp-archive"

    @classmethod
    def for_hour(cls, timestamp_ms: int | float) -> "SubscriptionRequest":
        return cls(timestamp=hour_epoch(timestamp_ms))

    def as_options(self) -> Mapping[str, Any]:
        """Return the request in the shape expected by the transport."""

        return {
            "payload": self.payload,
            "source": self.source,
            "interval": self.interval,
            "timestamp": self.timestamp,
            "limit": self.limit,
            "metrics": [channel.as_dict() for channel in self.metrics],
        }
