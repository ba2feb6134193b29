"""Helpers to load project-level configuration files.

Settings live in the ``[tool.metrics_history]`` table of a
``pyproject.toml``::

    [tool.metrics_history]
    archive = "~/recordings/metrics"
    initial_hours = 2
    max_cached_hours = 24

    [tool.metrics_history.events]
    swap_threshold = 0.25
    cpu_load_spikes = false

    [tool.metrics_history.logging]
    level = "info"
    format = "json"
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping as ABCMapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11 fallback
    import tomli as tomllib  # type: ignore

from .events import (
    CPU_LOAD_SPIKES,
    DEFAULT_SPIKE_THRESHOLD,
    SWAP_SPIKES,
    SpikeDetector,
)


CONFIG_ENV_VAR = "METRICS_HISTORY_CONFIG"
_PROJECT_FILENAME = "pyproject.toml"
_TOOL_SECTION = "metrics_history"

DEFAULT_INITIAL_HOURS = 2
DEFAULT_MAX_CACHED_HOURS = 0


def _as_dict(payload: ABCMapping[str, Any]) -> dict[str, Any]:
    """Recursively coerce TOML mappings into regular dictionaries."""

    result: dict[str, Any] = {}
    for key, value in payload.items():
        key_str = str(key)
        if isinstance(value, ABCMapping):
            result[key_str] = _as_dict(value)
        elif isinstance(value, list):
            result[key_str] = [
                _as_dict(item) if isinstance(item, ABCMapping) else item for item in value
            ]
        else:
            result[key_str] = value
    return result


def _resolve_pyproject_path(candidate: Path) -> Path | None:
    """Return the concrete ``pyproject.toml`` path for ``candidate`` if possible."""

    candidate = candidate.expanduser()
    if candidate.name == _PROJECT_FILENAME:
        return candidate
    if candidate.suffix:
        return None
    return candidate / _PROJECT_FILENAME


def _iter_unique_paths(paths: Iterable[Path]) -> list[Path]:
    seen: dict[Path, None] = {}
    ordered: list[Path] = []
    for path in paths:
        resolved = path.expanduser().resolve(strict=False)
        if resolved in seen:
            continue
        seen[resolved] = None
        ordered.append(resolved)
    return ordered


def _load_toml_mapping(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    if isinstance(data, ABCMapping):
        return _as_dict(data)
    return None


def load_project_config(path: Path) -> tuple[dict[str, Any], Path] | None:
    """Load the ``[tool.metrics_history]`` section from ``pyproject.toml``."""

    pyproject_path = _resolve_pyproject_path(path)
    if pyproject_path is None:
        return None

    pyproject_path = pyproject_path.expanduser().resolve(strict=False)
    pyproject_payload = _load_toml_mapping(pyproject_path)
    if not pyproject_payload:
        return None

    tool_section = pyproject_payload.get("tool")
    if not isinstance(tool_section, ABCMapping):
        return None

    section = tool_section.get(_TOOL_SECTION)
    if not isinstance(section, ABCMapping):
        return None

    return _as_dict(section), pyproject_path


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Locate and load the configuration mapping.

    An explicit ``path`` wins, then the file named by the
    ``METRICS_HISTORY_CONFIG`` environment variable, then the
    ``pyproject.toml`` of the current directory.  The resolved file is
    recorded under ``_config_path``.
    """

    bases: list[Path] = []
    if path is not None:
        bases.append(path)
    env_config = os.environ.get(CONFIG_ENV_VAR)
    if env_config:
        bases.append(Path(env_config))
    bases.append(Path.cwd())

    for base in _iter_unique_paths(bases):
        loaded = load_project_config(base)
        if not loaded:
            continue
        payload, source = loaded
        payload["_config_path"] = str(source)
        return payload

    return {"_config_path": None}


def _as_mapping(value: Any) -> Mapping[str, Any]:
    if isinstance(value, ABCMapping):
        return value
    return {}


def _coerce_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return fallback


def _coerce_int(value: Any, fallback: int, *, minimum: int = 0) -> int:
    try:
        numeric = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
    return max(minimum, numeric)


def _coerce_float(value: Any, fallback: float) -> float:
    try:
        numeric = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
    if numeric != numeric or numeric < 0:
        return fallback
    return numeric


@dataclass(frozen=True, slots=True)
class HistorySettings:
    """Immutable runtime settings parsed from TOML sources."""

    archive: Path | None = None
    initial_hours: int = DEFAULT_INITIAL_HOURS
    max_cached_hours: int = DEFAULT_MAX_CACHED_HOURS
    swap_threshold: float = DEFAULT_SPIKE_THRESHOLD
    cpu_load_spikes: bool = False
    cpu_load_threshold: float = DEFAULT_SPIKE_THRESHOLD

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> "HistorySettings":
        """Coerce a raw configuration mapping into settings.

        Unknown or invalid values fall back to the defaults.  A relative
        ``archive`` is resolved against the directory of the configuration
        file when that is known.
        """

        config = config or {}
        events_cfg = _as_mapping(config.get("events"))

        archive: Path | None = None
        raw_archive = config.get("archive")
        if isinstance(raw_archive, str) and raw_archive.strip():
            archive = Path(raw_archive).expanduser()
            source = config.get("_config_path")
            if not archive.is_absolute() and isinstance(source, str):
                archive = Path(source).parent / archive

        return cls(
            archive=archive,
            initial_hours=_coerce_int(
                config.get("initial_hours"), DEFAULT_INITIAL_HOURS, minimum=1
            ),
            max_cached_hours=_coerce_int(
                config.get("max_cached_hours"), DEFAULT_MAX_CACHED_HOURS
            ),
            swap_threshold=_coerce_float(
                events_cfg.get("swap_threshold"), DEFAULT_SPIKE_THRESHOLD
            ),
            cpu_load_spikes=_coerce_bool(events_cfg.get("cpu_load_spikes"), False),
            cpu_load_threshold=_coerce_float(
                events_cfg.get("cpu_load_threshold"), DEFAULT_SPIKE_THRESHOLD
            ),
        )

    def detectors(self) -> tuple[SpikeDetector, ...]:
        """Spike detectors enabled by these settings."""

        selected = [
            SpikeDetector(SWAP_SPIKES.series, SWAP_SPIKES.category, self.swap_threshold)
        ]
        if self.cpu_load_spikes:
            selected.append(
                SpikeDetector(
                    CPU_LOAD_SPIKES.series, CPU_LOAD_SPIKES.category, self.cpu_load_threshold
                )
            )
        return tuple(selected)


__all__ = [
    "CONFIG_ENV_VAR",
    "HistorySettings",
    "load_config",
    "load_project_config",
]
