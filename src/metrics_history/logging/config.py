"""Logger configuration shared by the library and the command line tools."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping as ABCMapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

__all__ = ["JsonFormatter", "setup_logging"]


_ROOT_LOGGER_NAME = "metrics_history"
_HANDLER_MARKER = "_metrics_history_handler"

# attributes present on every LogRecord; anything else came from ``extra``
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object.

    Structured fields passed through ``extra`` (``event``, ``hour``,
    ``category`` ...) are emitted as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_level(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        level = logging.getLevelName(value.strip().upper())
        if isinstance(level, int):
            return level
    raise ValueError(f"Unknown logging level: {value!r}")


def _build_handler(output: str) -> logging.Handler:
    target = output.strip()
    lowered = target.lower()
    if lowered == "stdout":
        return logging.StreamHandler(sys.stdout)
    if lowered == "stderr":
        return logging.StreamHandler(sys.stderr)
    path = Path(target).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def setup_logging(config: Mapping[str, Any] | None = None) -> logging.Logger:
    """Configure the package logger from the ``[logging]`` table.

    ``config`` may be the whole configuration mapping or just its logging
    section.  Recognised keys are ``level`` (default ``info``), ``output``
    (``stdout``, ``stderr`` or a file path) and ``format`` (``json`` or
    ``text``).  Calling it again replaces the handler installed earlier.
    """

    section: Mapping[str, Any] = {}
    if config:
        nested = config.get("logging")
        section = nested if isinstance(nested, ABCMapping) else config

    level = _resolve_level(section.get("level", "info"))
    output = str(section.get("output", "stderr"))
    fmt = str(section.get("format", "json")).lower()
    if fmt not in {"json", "text"}:
        raise ValueError(f"Unknown logging format: {fmt!r}")

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    handler = _build_handler(output)
    setattr(handler, _HANDLER_MARKER, True)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
