"""Load failures reported by the hour window pipeline."""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping, Optional

__all__ = [
    "EmptyLoadError",
    "LoadError",
    "MalformedFrameError",
    "ProblemCloseError",
    "normalise_context",
]


def normalise_context(context: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Keep JSON-friendly scalars and stringify everything else."""

    if not context:
        return {}
    payload: MutableMapping[str, Any] = {}
    for key, value in context.items():
        if isinstance(value, (str, int, float, bool)) or value is None:
            payload[key] = value
        else:
            payload[key] = str(value)
    return dict(payload)


class LoadError(RuntimeError):
    """Base class for a failed attempt at loading one hour."""

    category = "runtime"

    def __init__(
        self,
        message: str,
        *,
        hour_epoch: int | None = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.hour_epoch = hour_epoch
        self.context = dict(normalise_context(context))

    def with_hour(self, hour_epoch: int) -> "LoadError":
        """Attach the hour key when the error was raised without one."""

        if self.hour_epoch is None:
            self.hour_epoch = hour_epoch
        return self

    def as_dict(self) -> Mapping[str, Any]:
        return {
            "category": self.category,
            "message": str(self),
            "hour": self.hour_epoch,
            "context": dict(self.context),
        }


class EmptyLoadError(LoadError):
    """The stream closed cleanly without delivering a single sample."""

    category = "empty"


class ProblemCloseError(LoadError):
    """The collaborator closed the stream reporting a problem code."""

    category = "problem"

    def __init__(
        self,
        problem: str,
        *,
        hour_epoch: int | None = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        merged = dict(context or {})
        merged.setdefault("problem", problem)
        super().__init__(
            f"metrics stream closed with problem: {problem}",
            hour_epoch=hour_epoch,
            context=merged,
        )
        self.problem = problem


class MalformedFrameError(LoadError):
    """A frame did not have the shape the decoder expects."""

    category = "malformed"
