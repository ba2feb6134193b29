"""Subscription contract and the per-hour load state machine.

A :class:`MetricsSource` opens one subscription per requested hour and
pushes events into a :class:`StreamListener`: exactly one metadata frame,
any number of data frames and a single terminal close notification.
:class:`HourLoad` is the listener used by the window cache.  It moves
through ``PENDING_METADATA -> STREAMING -> {COMPLETE | FAILED | CANCELLED}``
and ignores every event received after reaching a terminal phase.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable, Optional, Protocol

from .buffer import HourBuffer, HourBufferBuilder
from .channels import SubscriptionRequest
from .decoder import Frame, SampleFrameDecoder
from .errors import EmptyLoadError, LoadError, MalformedFrameError, ProblemCloseError

__all__ = [
    "HourLoad",
    "LoadPhase",
    "MetricsSource",
    "StreamListener",
    "Subscription",
]


logger = logging.getLogger(__name__)


class StreamListener(Protocol):
    """Receiver of the frames of one subscription, in arrival order."""

    def on_frame(self, frame: Frame) -> None:  # pragma: no cover - interface only
        ...

    def on_close(self, problem: Optional[str] = None) -> None:  # pragma: no cover - interface only
        ...


class Subscription(Protocol):
    """Handle to an open stream."""

    def close(self) -> None:  # pragma: no cover - interface only
        ...


class MetricsSource(Protocol):
    """Collaborator able to stream an hour of archived samples."""

    def open(
        self, request: SubscriptionRequest, listener: StreamListener
    ) -> Subscription:  # pragma: no cover - interface only
        ...


class LoadPhase(enum.Enum):
    PENDING_METADATA = "pending-metadata"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (LoadPhase.COMPLETE, LoadPhase.FAILED, LoadPhase.CANCELLED)


CompletionCallback = Callable[["HourLoad", HourBuffer], None]
FailureCallback = Callable[["HourLoad", LoadError], None]


class HourLoad:
    """Decode one subscription into an hour buffer."""

    def __init__(
        self,
        hour_epoch: int,
        *,
        on_complete: CompletionCallback | None = None,
        on_failure: FailureCallback | None = None,
    ) -> None:
        self._hour_epoch = int(hour_epoch)
        self._builder: HourBufferBuilder | None = HourBufferBuilder(self._hour_epoch)
        self._decoder: SampleFrameDecoder | None = SampleFrameDecoder(self._builder)
        self._phase = LoadPhase.PENDING_METADATA
        self._subscription: Subscription | None = None
        self._on_complete = on_complete
        self._on_failure = on_failure
        self._result: HourBuffer | None = None
        self._error: LoadError | None = None

    @property
    def hour_epoch(self) -> int:
        return self._hour_epoch

    @property
    def phase(self) -> LoadPhase:
        return self._phase

    @property
    def result(self) -> HourBuffer | None:
        return self._result

    @property
    def error(self) -> LoadError | None:
        return self._error

    @property
    def request(self) -> SubscriptionRequest:
        return SubscriptionRequest.for_hour(self._hour_epoch)

    def attach(self, subscription: Subscription) -> None:
        """Remember the stream handle; close it at once if already finished."""

        self._subscription = subscription
        if self._phase in (LoadPhase.FAILED, LoadPhase.CANCELLED):
            self._close_subscription()

    def snapshot(self) -> HourBuffer | None:
        if self._result is not None:
            return self._result
        if self._builder is None:
            return None
        return self._builder.snapshot()

    def on_frame(self, frame: Frame) -> None:
        if self._phase.terminal:
            return
        assert self._decoder is not None
        try:
            self._decoder.feed(frame)
        except MalformedFrameError as exc:
            # carry-forward state cannot be trusted past a bad frame
            self._fail(exc)
            self._close_subscription()
            return
        if self._decoder.metadata is not None:
            self._phase = LoadPhase.STREAMING

    def on_close(self, problem: Optional[str] = None) -> None:
        if self._phase.terminal:
            return
        self._subscription = None
        if problem:
            self._fail(ProblemCloseError(problem))
            return
        assert self._builder is not None
        if self._builder.samples == 0:
            self._fail(EmptyLoadError("metrics stream closed without getting data"))
            return
        self._result = self._builder.finalize()
        self._phase = LoadPhase.COMPLETE
        self._release()
        logger.debug(
            "Decoded %d samples",
            self._result.samples,
            extra={"event": "history.load_decoded", "hour": self._hour_epoch},
        )
        if self._on_complete is not None:
            self._on_complete(self, self._result)

    def cancel(self) -> None:
        """Stop the load and discard whatever was decoded so far."""

        if self._phase.terminal:
            return
        self._phase = LoadPhase.CANCELLED
        self._release()
        self._close_subscription()

    def _fail(self, error: LoadError) -> None:
        self._error = error.with_hour(self._hour_epoch)
        self._phase = LoadPhase.FAILED
        self._release()
        if self._on_failure is not None:
            self._on_failure(self, self._error)

    def _release(self) -> None:
        self._builder = None
        self._decoder = None

    def _close_subscription(self) -> None:
        subscription = self._subscription
        self._subscription = None
        if subscription is not None:
            subscription.close()
