"""Example that decodes one recorded hour and prints it as CSV."""

from __future__ import annotations

import tempfile
from pathlib import Path

from metrics_history import ArchiveReplaySource, HourWindowCache, LoadState
from metrics_history.exporters import csv_exporter

HOUR = 1_699_999_200_000

DATA = """{"timestamp": 1699999215000, "interval": 5000}
[[10, 10, 10, [0.5, 1.2, 0.8], 8000000000, 4000000000, 0]]
[[null, 30, null, null, null, 3000000000, null], [null, null, null, null, null, null, 5]]
"""


def main() -> None:
    with tempfile.TemporaryDirectory() as directory:
        archive = Path(directory)
        (archive / f"{HOUR}.jsonl").write_text(DATA, encoding="utf-8")

        cache = HourWindowCache(ArchiveReplaySource(archive))
        if cache.request(HOUR) is not LoadState.COMPLETE:
            raise SystemExit(f"hour failed to load: {cache.error(HOUR)}")
        print(csv_exporter({"hours": [cache.get(HOUR)]}))


if __name__ == "__main__":
    main()
