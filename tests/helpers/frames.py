"""Builders for archive frames and on-disk recordings."""

from __future__ import annotations

import gzip
import json
from pathlib import Path
from typing import Any, Iterable, Sequence

from metrics_history.channels import TICK_MS

# nice, user, sys, load tuple, physmem, available, swap out
FULL_SAMPLE: tuple[Any, ...] = (10, 10, 10, [0.5, 1.2, 0.8], 8e9, 4e9, 0)


def build_metadata(timestamp: int, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"timestamp": timestamp, "interval": TICK_MS}
    payload.update(extra)
    return payload


def build_sample(**channels: Any) -> list[Any]:
    """Return a compressed sample where unspecified channels are ``None``."""

    names = ("nice", "user", "sys", "load", "total", "available", "swap")
    unknown = set(channels) - set(names)
    if unknown:
        raise TypeError(f"unknown channels: {sorted(unknown)}")
    return [channels.get(name) for name in names]


def write_recording(
    root: Path,
    hour: int,
    frames: Iterable[Any],
    *,
    problem: str | None = None,
    compress: bool = False,
    raw_lines: Sequence[str] = (),
) -> Path:
    """Write ``frames`` as JSON lines for ``hour`` under ``root``."""

    root.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(frame) for frame in frames]
    lines.extend(raw_lines)
    if problem is not None:
        lines.append(json.dumps({"command": "close", "problem": problem}))
    text = "\n".join(lines) + "\n"
    if compress:
        path = root / f"{hour}.jsonl.gz"
        with gzip.open(path, "wt", encoding="utf-8") as handle:
            handle.write(text)
    else:
        path = root / f"{hour}.jsonl"
        path.write_text(text, encoding="utf-8")
    return path
