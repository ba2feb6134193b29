"""Benchmark decoding a full hour of compressed samples."""

from __future__ import annotations

import argparse
import json
import random
import statistics
import time

from metrics_history.buffer import HourBufferBuilder
from metrics_history.channels import TICK_MS, TICKS_PER_HOUR, hour_epoch
from metrics_history.decoder import SampleFrameDecoder
from metrics_history.events import detect_events


def _format(label: str, durations: list[float]) -> str:
    mean = statistics.fmean(durations)
    throughput = TICKS_PER_HOUR / mean if mean else float("nan")
    deviation = statistics.pstdev(durations) if len(durations) > 1 else 0.0
    return (
        f"{label}: {mean * 1_000:.3f} ms +/- {deviation * 1_000:.3f} ms "
        f"({throughput:,.0f} samples/s)"
    )


def _frames(hour: int, batch: int, seed: int) -> list[str]:
    rng = random.Random(seed)
    samples = [[10, 20, 5, [0.5, 1.1, 0.9], 8e9, 4e9, 0]]
    for _ in range(TICKS_PER_HOUR - 1):
        sample = [None] * 7
        # most channels repeat their previous value
        for channel in (0, 1, 2, 5, 6):
            if rng.random() < 0.3:
                sample[channel] = rng.uniform(0, 2000) if channel != 5 else rng.uniform(1e9, 7e9)
        if rng.random() < 0.2:
            sample[3] = [None, rng.uniform(0, 12), None]
        samples.append(sample)
    frames = [json.dumps({"timestamp": hour, "interval": TICK_MS})]
    for start in range(0, len(samples), batch):
        frames.append(json.dumps(samples[start : start + batch]))
    return frames


def _decode(hour: int, frames: list[str]) -> None:
    decoder = SampleFrameDecoder(HourBufferBuilder(hour))
    for frame in frames:
        decoder.feed(frame)
    detect_events(decoder.builder.finalize())


def run(repeats: int, batch: int) -> None:
    hour = hour_epoch(time.time() * 1000)
    frames = _frames(hour, batch, seed=7)

    durations: list[float] = []
    for _ in range(repeats):
        start = time.perf_counter()
        _decode(hour, frames)
        durations.append(time.perf_counter() - start)

    print(f"Hour decoding ({len(frames) - 1} data frames of {batch} samples)")
    print("  " + _format("decode+events", durations))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--repeats", type=int, default=20, help="Number of timing repeats")
    parser.add_argument("--batch", type=int, default=60, help="Samples per data frame")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    run(repeats=max(args.repeats, 1), batch=max(args.batch, 1))
