"""Errors reported by the metrics history command line tools.

Every failure the CLI reports carries a category that selects the exit
status.  Hours that failed inside the window cache are translated with
:meth:`CliError.from_load_error`, so a recording missing from the archive
exits the same way as a missing archive directory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from ..errors import LoadError, ProblemCloseError, normalise_context

__all__ = [
    "CliError",
    "ErrorPayload",
    "build_error_payload",
    "load_error_category",
    "log_cli_error",
]


_CATEGORY_STATUS_CODES: Mapping[str, int] = {
    "runtime": 1,
    "usage": 2,
    "io": 3,
    "not_found": 4,
    "data": 5,
}

_DEFAULT_CATEGORY = "runtime"
_LOGGER_NAME = "metrics_history.cli"

# LoadError.category -> CLI category
_LOAD_CATEGORIES: Mapping[str, str] = {
    "empty": "not_found",
    "problem": "io",
    "malformed": "data",
}
_NOT_FOUND_PROBLEMS = frozenset({"not-found"})


def _status_for(category: str) -> int:
    return _CATEGORY_STATUS_CODES.get(category, _CATEGORY_STATUS_CODES[_DEFAULT_CATEGORY])


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """What the CLI prints and logs about one failure."""

    category: str
    message: str
    status_code: int
    hour: int | None = None
    context: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "hour": self.hour,
            "category": self.category,
            "status_code": self.status_code,
            "message": self.message,
            "context": dict(self.context),
        }


def build_error_payload(
    message: str,
    *,
    category: str = _DEFAULT_CATEGORY,
    status_code: Optional[int] = None,
    hour: int | None = None,
    context: Optional[Mapping[str, Any]] = None,
) -> ErrorPayload:
    resolved = category or _DEFAULT_CATEGORY
    return ErrorPayload(
        category=resolved,
        message=message,
        status_code=status_code if status_code is not None else _status_for(resolved),
        hour=hour,
        context=normalise_context(context),
    )


def load_error_category(error: LoadError) -> str:
    """CLI category for a failed hour load."""

    if isinstance(error, ProblemCloseError) and error.problem in _NOT_FOUND_PROBLEMS:
        return "not_found"
    return _LOAD_CATEGORIES.get(error.category, _DEFAULT_CATEGORY)


def log_cli_error(payload: ErrorPayload, *, logger: Optional[logging.Logger] = None) -> None:
    target = logger or logging.getLogger(_LOGGER_NAME)
    target.error(
        payload.message,
        extra={
            "event": "cli.error",
            "category": payload.category,
            "status_code": payload.status_code,
            "hour": payload.hour,
            "context": dict(payload.context),
        },
    )


class CliError(RuntimeError):
    """Failure surfaced to the user with an exit status."""

    def __init__(
        self,
        message: str,
        *,
        category: str = _DEFAULT_CATEGORY,
        status_code: Optional[int] = None,
        hour: int | None = None,
        context: Optional[Mapping[str, Any]] = None,
        logged: bool = False,
    ) -> None:
        super().__init__(message)
        self._payload = build_error_payload(
            message,
            category=category,
            status_code=status_code,
            hour=hour,
            context=context,
        )
        self.category = self._payload.category
        self.status_code = self._payload.status_code
        self.context = dict(self._payload.context)
        self.logged = logged

    @property
    def payload(self) -> ErrorPayload:
        return self._payload

    @classmethod
    def from_load_error(cls, error: LoadError) -> "CliError":
        """Translate the error recorded for a failed hour."""

        context = dict(error.context)
        context["load_category"] = error.category
        return cls(
            str(error),
            category=load_error_category(error),
            hour=error.hour_epoch,
            context=context,
        )

    @classmethod
    def unfinished(cls, hour: int, state: str) -> "CliError":
        """An hour that neither completed nor failed before the output was built."""

        return cls(
            f"hour {hour} did not finish loading",
            category="runtime",
            hour=hour,
            context={"state": state},
        )
