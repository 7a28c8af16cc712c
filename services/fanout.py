"""Concurrent fan-out of reading batches to independent sinks.

One coordinator owns one sink per output request. Every batch handed to
:meth:`FanOutCoordinator.process` is queued for each sink that still accepts
data; each sink drains its own unbounded queue in arrival order on its own
unit of concurrency. :meth:`FanOutCoordinator.end` signals end-of-stream,
waits (bounded) for every sink to finalize and returns exactly one
:class:`SinkResult` per request, in request order.

Two interchangeable strategies exist: :class:`TaskFanOutCoordinator` drives
each sink from an ``asyncio`` task, :class:`ThreadFanOutCoordinator` from a
dedicated background thread. Pick one with :func:`build_coordinator`.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Type

from models.errors import ConfigurationError, SinkIOError
from models.records import Batch, ConcurrencyMode, OutputFormat, OutputRequest, SinkResult
from sinks.base import SensorSink
from sinks.factory import SinkFactory

logger = logging.getLogger(__name__)

DEFAULT_WORKER_TIMEOUT = 10.0
DEFAULT_DISPOSE_TIMEOUT = 5.0

# End-of-stream marker placed on a sink queue.
_END = object()


class CoordinatorState(str, Enum):
    idle = "idle"
    prepared = "prepared"
    running = "running"
    ended = "ended"
    closed = "closed"


@dataclass(eq=False)
class _SinkChannel:
    index: int
    request: OutputRequest
    sink: SensorSink
    accepting: bool = True
    closed: bool = False
    aborted: bool = False
    queue: Any = None
    worker: Any = None
    result: Optional[SinkResult] = None

    @property
    def output_format(self) -> OutputFormat:
        return self.request.output_format

    def log_context(self, **extra: Any) -> Dict[str, Any]:
        return {"output_format": self.output_format.value, "sink_index": self.index, **extra}


class FanOutCoordinator(ABC):
    mode: ClassVar[ConcurrencyMode]

    def __init__(
        self,
        requests: Sequence[OutputRequest],
        factory: SinkFactory,
        worker_timeout: float = DEFAULT_WORKER_TIMEOUT,
        dispose_timeout: float = DEFAULT_DISPOSE_TIMEOUT,
    ) -> None:
        self.state = CoordinatorState.idle
        self.worker_timeout = worker_timeout
        self.dispose_timeout = dispose_timeout
        self._channels: List[_SinkChannel] = [
            _SinkChannel(index=index, request=request, sink=factory.create_sink(request.output_format))
            for index, request in enumerate(requests)
        ]
        self._results: Optional[List[SinkResult]] = None
        self._batch_count = 0
        self.state = CoordinatorState.prepared

    @property
    def batch_count(self) -> int:
        return self._batch_count

    # ------------------------------------------------------------------
    async def process(self, batch: Batch) -> None:
        """Queue ``batch`` for every sink still accepting data."""
        if self.state in (CoordinatorState.ended, CoordinatorState.closed):
            raise RuntimeError(f"Cannot process batches once the coordinator is {self.state.value}.")
        self._ensure_running()

        self._batch_count += 1
        for channel in self._channels:
            if channel.accepting and not channel.closed:
                self._offer(channel, batch)
        # Lets task workers drain and is where cancellation lands.
        await asyncio.sleep(0)

    async def end(self) -> List[SinkResult]:
        if self._results is not None:
            return list(self._results)
        if self.state is CoordinatorState.closed:
            raise RuntimeError("Cannot end a coordinator that was already disposed.")
        self._ensure_running()

        for channel in self._channels:
            self._close_channel(channel)
        results = await self._collect(self.worker_timeout)

        self._results = results
        self.state = CoordinatorState.ended
        failed = sum(1 for result in results if not result.success)
        logger.info(
            "Fan-out completed: %d succeeded, %d failed",
            len(results) - failed,
            failed,
            extra={"mode": self.mode.value, "batch_count": self._batch_count},
        )
        return list(results)

    async def aclose(self) -> None:
        """Release workers and sinks. Safe in any state and more than once."""
        if self.state is CoordinatorState.closed:
            return
        if self.state is CoordinatorState.running:
            # end() was never reached: workers drop queued batches and skip finalize.
            for channel in self._channels:
                channel.aborted = True
                self._close_channel(channel)
        if self.state in (CoordinatorState.running, CoordinatorState.ended):
            await self._shutdown(self.dispose_timeout)
        self.state = CoordinatorState.closed
        for channel in self._channels:
            channel.sink.dispose()

    async def __aenter__(self) -> "FanOutCoordinator":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    def _ensure_running(self) -> None:
        if self.state is CoordinatorState.prepared:
            logger.info(
                "Starting %d sink workers",
                len(self._channels),
                extra={"mode": self.mode.value},
            )
            self._start()
            self.state = CoordinatorState.running

    def _open_sink(self, channel: _SinkChannel) -> bool:
        try:
            channel.sink.open(channel.request)
        except SinkIOError as exc:
            channel.accepting = False
            logger.warning(
                "Sink could not be opened; its batches are discarded",
                extra=channel.log_context(reason=str(exc)),
            )
            return False
        logger.debug(
            "Sink opened",
            extra=channel.log_context(file_path=str(channel.sink.file_path)),
        )
        return True

    def _write_batch(self, channel: _SinkChannel, batch: Batch) -> None:
        if channel.aborted:
            return
        try:
            channel.sink.append(batch)
        except SinkIOError:
            channel.accepting = False

    def _finish_sink(self, channel: _SinkChannel) -> SinkResult:
        if channel.aborted:
            return SinkResult.failed(channel.output_format, "Sink was disposed before end of stream")
        try:
            response = channel.sink.finalize()
        except SinkIOError as exc:
            return SinkResult.failed(channel.output_format, str(exc))
        return SinkResult(success=True, output_format=channel.output_format, file_path=response.file_path)

    def _worker_error(self, channel: _SinkChannel, exc: Exception) -> SinkResult:
        logger.exception("Sink worker failed unexpectedly", extra=channel.log_context())
        return SinkResult.failed(channel.output_format, f"Processing worker error: {exc}")

    def _timed_out(self, channel: _SinkChannel, timeout: float) -> SinkResult:
        logger.warning(
            "Sink worker did not complete within %.1fs",
            timeout,
            extra=channel.log_context(),
        )
        return SinkResult.failed(
            channel.output_format,
            f"{channel.output_format.label} sink did not complete within {timeout:g}s",
        )

    # ------------------------------------------------------------------
    @abstractmethod
    def _start(self) -> None:
        """Create and start one worker per channel."""

    @abstractmethod
    def _offer(self, channel: _SinkChannel, batch: Batch) -> None:
        """Hand ``batch`` to the channel's queue without blocking."""

    @abstractmethod
    def _close_channel(self, channel: _SinkChannel) -> None:
        """Signal end-of-stream to the channel's worker, once."""

    @abstractmethod
    async def _collect(self, timeout: float) -> List[SinkResult]:
        """Wait for workers and return one result per channel, in order."""

    @abstractmethod
    async def _shutdown(self, timeout: float) -> None:
        """Wait (bounded) for any worker that is still alive."""


class TaskFanOutCoordinator(FanOutCoordinator):
    """Each sink is drained by an ``asyncio`` task reading an ``asyncio.Queue``."""

    mode = ConcurrencyMode.task

    def _start(self) -> None:
        for channel in self._channels:
            channel.queue = asyncio.Queue()
            channel.worker = asyncio.create_task(
                self._drain(channel, channel.queue),
                name=f"sink-worker-{channel.output_format.value}-{channel.index}",
            )

    def _offer(self, channel: _SinkChannel, batch: Batch) -> None:
        channel.queue.put_nowait(batch)

    def _close_channel(self, channel: _SinkChannel) -> None:
        if channel.closed:
            return
        channel.closed = True
        channel.queue.put_nowait(_END)

    async def _drain(self, channel: _SinkChannel, pending: "asyncio.Queue[Any]") -> SinkResult:
        try:
            if self._open_sink(channel):
                while True:
                    batch = await pending.get()
                    if batch is _END:
                        break
                    self._write_batch(channel, batch)
            return self._finish_sink(channel)
        except Exception as exc:
            return self._worker_error(channel, exc)
        finally:
            channel.sink.dispose()

    async def _collect(self, timeout: float) -> List[SinkResult]:
        tasks = [channel.worker for channel in self._channels]
        if not tasks:
            return []
        # Sink I/O is synchronous, so the bound only applies while a worker
        # is suspended on its queue.
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.wait(pending, timeout=self.dispose_timeout)

        try:
            return [self._task_result(channel, timeout) for channel in self._channels]
        except Exception as exc:
            logger.exception("Sink task group failed", extra={"mode": self.mode.value})
            return [
                SinkResult.failed(channel.output_format, f"Fan-out end failed: {exc}")
                for channel in self._channels
            ]

    def _task_result(self, channel: _SinkChannel, timeout: float) -> SinkResult:
        task: asyncio.Task = channel.worker
        if task.cancelled():
            return self._timed_out(channel, timeout)
        return task.result()

    async def _shutdown(self, timeout: float) -> None:
        tasks = [channel.worker for channel in self._channels if channel.worker is not None]
        pending = [task for task in tasks if not task.done()]
        if not pending:
            return
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            logger.warning("Sink task did not stop within %.1fs; cancelling", timeout)
            task.cancel()


class ThreadFanOutCoordinator(FanOutCoordinator):
    """Each sink is drained by a daemon thread consuming a ``queue.Queue``."""

    mode = ConcurrencyMode.thread

    def _start(self) -> None:
        for channel in self._channels:
            channel.queue = queue.Queue()
            channel.worker = threading.Thread(
                target=self._drain,
                args=(channel, channel.queue),
                name=f"sink-worker-{channel.output_format.value}-{channel.index}",
                daemon=True,
            )
            channel.worker.start()

    def _offer(self, channel: _SinkChannel, batch: Batch) -> None:
        channel.queue.put(batch)

    def _close_channel(self, channel: _SinkChannel) -> None:
        if channel.closed:
            return
        channel.closed = True
        channel.queue.put(_END)

    def _drain(self, channel: _SinkChannel, pending: "queue.Queue[Any]") -> None:
        try:
            if self._open_sink(channel):
                for batch in iter(pending.get, _END):
                    self._write_batch(channel, batch)
            channel.result = self._finish_sink(channel)
        except Exception as exc:
            channel.result = self._worker_error(channel, exc)
        finally:
            channel.sink.dispose()

    def _join(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        for channel in self._channels:
            thread: Optional[threading.Thread] = channel.worker
            if thread is None:
                continue
            thread.join(max(0.0, deadline - time.monotonic()))

    async def _collect(self, timeout: float) -> List[SinkResult]:
        await asyncio.to_thread(self._join, timeout)
        results: List[SinkResult] = []
        for channel in self._channels:
            if channel.worker.is_alive():
                results.append(self._timed_out(channel, timeout))
            elif channel.result is None:
                results.append(
                    SinkResult.failed(channel.output_format, "Sink worker exited without reporting a result")
                )
            else:
                results.append(channel.result)
        return results

    async def _shutdown(self, timeout: float) -> None:
        if not any(channel.worker is not None and channel.worker.is_alive() for channel in self._channels):
            return
        await asyncio.to_thread(self._join, timeout)
        for channel in self._channels:
            if channel.worker is not None and channel.worker.is_alive():
                logger.warning(
                    "Sink thread did not stop within %.1fs; abandoning it",
                    timeout,
                    extra=channel.log_context(),
                )


_COORDINATORS: Dict[ConcurrencyMode, Type[FanOutCoordinator]] = {
    ConcurrencyMode.task: TaskFanOutCoordinator,
    ConcurrencyMode.thread: ThreadFanOutCoordinator,
}


def build_coordinator(
    requests: Sequence[OutputRequest],
    factory: SinkFactory,
    mode: ConcurrencyMode | str = ConcurrencyMode.task,
    worker_timeout: float = DEFAULT_WORKER_TIMEOUT,
    dispose_timeout: float = DEFAULT_DISPOSE_TIMEOUT,
) -> FanOutCoordinator:
    try:
        coordinator_type = _COORDINATORS[ConcurrencyMode(mode)]
    except (KeyError, ValueError) as exc:
        raise ConfigurationError(f"Unknown concurrency mode {mode!r}.") from exc
    return coordinator_type(
        requests,
        factory,
        worker_timeout=worker_timeout,
        dispose_timeout=dispose_timeout,
    )
