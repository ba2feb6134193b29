"""Concrete stream collaborators.

:class:`ArchiveReplaySource` replays frames recorded on disk, one JSON
frame per line, and is what the command line tools use.
:class:`AsyncStreamSource` adapts any asynchronous frame iterator (for
example a :class:`FrameQueue` fed by a websocket or bridge transport) by
running one asyncio task per subscription.
"""

from __future__ import annotations

import asyncio
import gzip
import json
import logging
from pathlib import Path
from types import TracebackType
from typing import IO, Any, AsyncIterator, Callable, Iterator, Optional

from .channels import SubscriptionRequest
from .decoder import Frame
from .stream import StreamListener

__all__ = [
    "ArchiveReplaySource",
    "AsyncStreamSource",
    "FrameQueue",
    "StreamProblem",
]


logger = logging.getLogger(__name__)

NOT_FOUND_PROBLEM = "not-found"
INTERNAL_ERROR_PROBLEM = "internal-error"


class StreamProblem(Exception):
    """Raised by a frame iterator to close its stream with a problem code."""

    def __init__(self, problem: str) -> None:
        super().__init__(problem)
        self.problem = problem


class _ClosableSubscription:
    __slots__ = ("closed",)

    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class ArchiveReplaySource:
    """Replay recorded hours from ``<root>/<hour_epoch_ms>.jsonl[.gz]``.

    A line holding ``{"command": "close", "problem": ...}`` ends the stream
    with that problem; reaching the end of the file closes it cleanly.
    Missing recordings close with the ``not-found`` problem, the same way
    an archive without data for the hour would.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._opened: list[SubscriptionRequest] = []

    @property
    def root(self) -> Path:
        return self._root

    @property
    def opened(self) -> list[SubscriptionRequest]:
        return list(self._opened)

    def path_for(self, request: SubscriptionRequest) -> Path | None:
        for suffix in (".jsonl", ".jsonl.gz"):
            candidate = self._root / f"{request.timestamp}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def open(self, request: SubscriptionRequest, listener: StreamListener) -> _ClosableSubscription:
        self._opened.append(request)
        subscription = _ClosableSubscription()
        path = self.path_for(request)
        if path is None:
            logger.debug(
                "No recording for hour",
                extra={"event": "history.replay_missing", "hour": request.timestamp},
            )
            listener.on_close(NOT_FOUND_PROBLEM)
            return subscription

        with self._open_file(path) as handle:
            for frame in _iter_lines(handle):
                if subscription.closed:
                    return subscription
                if isinstance(frame, dict) and frame.get("command") == "close":
                    listener.on_close(frame.get("problem") or None)
                    return subscription
                listener.on_frame(frame)
        if not subscription.closed:
            listener.on_close(None)
        return subscription

    @staticmethod
    def _open_file(path: Path) -> IO[str]:
        if path.suffix == ".gz":
            return gzip.open(path, "rt", encoding="utf-8")
        return path.open("r", encoding="utf-8")


def _iter_lines(handle: IO[str]) -> Iterator[Any]:
    for line in handle:
        stripped = line.strip()
        if not stripped:
            continue
        try:
            yield json.loads(stripped)
        except json.JSONDecodeError:
            # let the decoder report it as a malformed frame
            yield stripped


class FrameQueue:
    """Asynchronous frame iterator fed by a transport."""

    _END = object()

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize)
        self._problem: Optional[str] = None
        self._finished = False

    def push(self, frame: Frame) -> None:
        if self._finished:
            raise RuntimeError("FrameQueue is already finished")
        self._queue.put_nowait(frame)

    def finish(self, problem: Optional[str] = None) -> None:
        if self._finished:
            return
        self._finished = True
        self._problem = problem
        self._queue.put_nowait(self._END)

    def __aiter__(self) -> "FrameQueue":
        return self

    async def __anext__(self) -> Frame:
        item = await self._queue.get()
        if item is self._END:
            # keep the sentinel so later readers stop too
            self._queue.put_nowait(item)
            if self._problem:
                raise StreamProblem(self._problem)
            raise StopAsyncIteration
        return item


FrameStreamFactory = Callable[[SubscriptionRequest], AsyncIterator[Frame]]


class _TaskSubscription:
    __slots__ = ("_task",)

    def __init__(self, task: "asyncio.Task[None]") -> None:
        self._task = task

    @property
    def task(self) -> "asyncio.Task[None]":
        return self._task

    def close(self) -> None:
        if not self._task.done():
            self._task.cancel()


class AsyncStreamSource:
    """Run one asyncio task per subscription forwarding frames in order."""

    def __init__(
        self,
        factory: FrameStreamFactory,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._factory = factory
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def open(self, request: SubscriptionRequest, listener: StreamListener) -> _TaskSubscription:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._pump(request, listener))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return _TaskSubscription(task)

    async def _pump(self, request: SubscriptionRequest, listener: StreamListener) -> None:
        problem: Optional[str] = None
        try:
            async for frame in self._factory(request):
                listener.on_frame(frame)
        except StreamProblem as exc:
            problem = exc.problem
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Metrics stream failed",
                extra={"event": "history.stream_error", "hour": request.timestamp},
            )
            problem = INTERNAL_ERROR_PROBLEM
        listener.on_close(problem)

    async def drain(self) -> None:
        """Wait for every outstanding subscription task to finish."""

        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def __aenter__(self) -> "AsyncStreamSource":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
