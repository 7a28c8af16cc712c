"""Background execution of processing runs for the HTTP API."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Dict, Optional
from uuid import uuid4

from app.schemas import (
    AccumulationSchema,
    ProcessRequestSchema,
    RunRecord,
    RunStatus,
    SinkResultSchema,
)
from datastore.run_store import RunStore, build_default_store
from models.errors import PipelineError
from models.records import ConcurrencyMode, ProcessRequest
from services.pipeline import SensorPipeline, build_pipeline, run_pipeline
from services.validation import RequestValidator
from settings import get_settings

logger = logging.getLogger(__name__)

PipelineBuilder = Callable[[Optional[ConcurrencyMode]], SensorPipeline]


def _default_pipeline_builder(mode: Optional[ConcurrencyMode]) -> SensorPipeline:
    return build_pipeline(mode=mode)


class RunnerService:
    """Validates submissions, runs pipelines on a thread pool, records outcomes."""

    def __init__(
        self,
        store: RunStore,
        pipeline_builder: PipelineBuilder = _default_pipeline_builder,
        validator: Optional[RequestValidator] = None,
        workers: int = 2,
    ) -> None:
        self.store = store
        self.pipeline_builder = pipeline_builder
        self.validator = validator or RequestValidator()
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="run")
        self._futures: Dict[str, Future[None]] = {}
        self._futures_lock = Lock()

    def submit(self, payload: ProcessRequestSchema) -> str:
        """Validate the request and schedule it. Raises ``InvalidRequestError``."""
        request = payload.to_request()
        self.validator.validate(request)

        run_id = str(uuid4())
        submitted_at = datetime.now(timezone.utc)
        self.store.put(
            RunRecord(
                run_id=run_id,
                status=RunStatus.queued,
                input_path=request.input_path,
                submitted_at=submitted_at,
            )
        )

        future = self.executor.submit(
            self._run,
            run_id=run_id,
            request=request,
            mode=payload.concurrency_mode,
            submitted_at=submitted_at,
        )
        with self._futures_lock:
            self._futures[run_id] = future
        future.add_done_callback(lambda _f, rid=run_id: self._clear_future(rid))
        return run_id

    def fetch(self, run_id: str) -> RunRecord:
        record = self.store.get(run_id)
        if record is None:
            raise KeyError(f"Run {run_id!r} not found.")
        return record

    def wait(self, run_id: str, timeout: Optional[float] = None) -> None:
        """Block until a still-executing run finishes."""
        with self._futures_lock:
            future = self._futures.get(run_id)
        if future is not None:
            future.result(timeout=timeout)

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _clear_future(self, run_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(run_id, None)

    def _run(
        self,
        run_id: str,
        request: ProcessRequest,
        mode: Optional[ConcurrencyMode],
        submitted_at: datetime,
    ) -> None:
        start_time = time.perf_counter()
        self.store.put(
            RunRecord(
                run_id=run_id,
                status=RunStatus.running,
                input_path=request.input_path,
                submitted_at=submitted_at,
            )
        )

        accumulation: Optional[AccumulationSchema] = None
        outputs: list[SinkResultSchema] = []
        error: Optional[str] = None
        try:
            report = run_pipeline(request, pipeline=self.pipeline_builder(mode), run_id=run_id)
            accumulation = AccumulationSchema.from_accumulation(report.accumulation)
            outputs = [SinkResultSchema.from_result(result) for result in report.outputs]
            status = RunStatus.completed
        except PipelineError as exc:
            status = RunStatus.failed
            error = str(exc)
        except Exception as exc:  # pragma: no cover
            logger.exception("Run crashed", extra={"run_id": run_id})
            status = RunStatus.failed
            error = f"Unexpected error: {exc}"

        processing_ms = int((time.perf_counter() - start_time) * 1000)
        self.store.put(
            RunRecord(
                run_id=run_id,
                status=status,
                input_path=request.input_path,
                submitted_at=submitted_at,
                finished_at=datetime.now(timezone.utc),
                processing_ms=processing_ms,
                accumulation=accumulation,
                outputs=outputs,
                error=error,
            )
        )
        logger.info(
            "Run recorded",
            extra={"run_id": run_id, "status": status.value, "processing_ms": processing_ms},
        )


@lru_cache
def build_default_runner(workers: Optional[int] = None) -> RunnerService:
    """Factory that wires the runner with the default store."""
    worker_count = workers or get_settings().runner_workers
    return RunnerService(store=build_default_store(), workers=worker_count)
