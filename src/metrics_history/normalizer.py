"""Conversion of raw channel values into bounded utilisation scores."""

from __future__ import annotations

import math
from typing import NamedTuple, Sequence

from .channels import (
    CPU_NICE,
    CPU_SYS,
    CPU_USER,
    LOAD,
    MEM_AVAILABLE,
    MEM_TOTAL,
    SWAP_OUT,
)

__all__ = [
    "DerivedSample",
    "LOAD_CLIP",
    "NO_DATA",
    "SERIES_NAMES",
    "SWAP_HEAVY_RATE",
    "SWAP_LIGHT_RATE",
    "is_no_data",
    "normalize",
]


NO_DATA = math.nan

SERIES_NAMES: tuple[str, ...] = (
    "cpu_utilization",
    "cpu_saturation",
    "memory_utilization",
    "memory_saturation",
)

LOAD_CLIP = 10.0
SWAP_HEAVY_RATE = 1000.0
SWAP_LIGHT_RATE = 1.0


def is_no_data(value: float | None) -> bool:
    return value is None or math.isnan(value)


class DerivedSample(NamedTuple):
    """The four derived series values for one tick."""

    cpu_utilization: float
    cpu_saturation: float
    memory_utilization: float
    memory_saturation: float

    @classmethod
    def filled(cls, value: float) -> "DerivedSample":
        return cls(value, value, value, value)


def _cpu_utilization(nice: float | None, user: float | None, sys: float | None) -> float:
    if nice is None or user is None or sys is None:
        return NO_DATA
    # msec/s, 1.0 is one core fully busy; multi-core hosts exceed it
    return (nice + user + sys) / 1000.0


def _cpu_saturation(load: float | None) -> float:
    if load is None:
        return NO_DATA
    # load is unbounded; everything above the clip looks the same
    return min(load, LOAD_CLIP) / LOAD_CLIP


def _memory_utilization(total: float | None, available: float | None) -> float:
    if total is None or available is None or total <= 0:
        return NO_DATA
    # used == total - available
    return 1.0 - (available / total)


def _memory_saturation(swap_out: float | None) -> float:
    if swap_out is None:
        return NO_DATA
    # unbounded and mostly 0: nothing, a little, or a lot
    if swap_out > SWAP_HEAVY_RATE:
        return 1.0
    if swap_out > SWAP_LIGHT_RATE:
        return 0.3
    return 0.0


def normalize(values: Sequence[float | None]) -> DerivedSample:
    """Derive the four scores from one decoded 7-channel vector.

    Channels still unknown at this point (``None``) produce :data:`NO_DATA`
    for every series depending on them.
    """

    return DerivedSample(
        cpu_utilization=_cpu_utilization(values[CPU_NICE], values[CPU_USER], values[CPU_SYS]),
        cpu_saturation=_cpu_saturation(values[LOAD]),
        memory_utilization=_memory_utilization(values[MEM_TOTAL], values[MEM_AVAILABLE]),
        memory_saturation=_memory_saturation(values[SWAP_OUT]),
    )
