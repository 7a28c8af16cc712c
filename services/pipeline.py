"""End-to-end sequencing of one processing run.

The driver reads the source serially, feeds every reading to the
accumulator, and hands fixed-size batches to the fan-out coordinator. Sinks
are always shut down before an error leaves :meth:`SensorPipeline.process`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional

from models.errors import PipelineError, UnexpectedPipelineError
from models.records import (
    ConcurrencyMode,
    PipelineReport,
    ProcessRequest,
    SensorReading,
)
from services.accumulator import SensorAccumulator
from services.fanout import (
    DEFAULT_DISPOSE_TIMEOUT,
    DEFAULT_WORKER_TIMEOUT,
    FanOutCoordinator,
    build_coordinator,
)
from services.reader import JsonReadingSource
from services.validation import RequestValidator
from settings import Settings, get_settings
from sinks.factory import SinkFactory
from sinks.naming import Clock, OutputNamer

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


class SensorPipeline:
    def __init__(
        self,
        source: JsonReadingSource,
        accumulator: SensorAccumulator,
        factory: SinkFactory,
        validator: Optional[RequestValidator] = None,
        mode: ConcurrencyMode = ConcurrencyMode.task,
        batch_size: int = DEFAULT_BATCH_SIZE,
        worker_timeout: float = DEFAULT_WORKER_TIMEOUT,
        dispose_timeout: float = DEFAULT_DISPOSE_TIMEOUT,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive.")
        self.source = source
        self.accumulator = accumulator
        self.factory = factory
        self.validator = validator or RequestValidator()
        self.mode = ConcurrencyMode(mode)
        self.batch_size = batch_size
        self.worker_timeout = worker_timeout
        self.dispose_timeout = dispose_timeout

    async def process(self, request: ProcessRequest, run_id: Optional[str] = None) -> PipelineReport:
        """Run the whole ingestion and fan-out for ``request``.

        Raises ``InvalidRequestError`` before any I/O, ``SourceNotFoundError``
        or ``ReadingDecodeError`` for source failures, and
        ``UnexpectedPipelineError`` for anything else. Individual sink
        failures never raise; they are reported in ``PipelineReport.outputs``.
        """
        self.validator.validate(request)

        start = time.perf_counter()
        reader = self.accumulator.reset()
        coordinator = build_coordinator(
            request.outputs,
            self.factory,
            self.mode,
            worker_timeout=self.worker_timeout,
            dispose_timeout=self.dispose_timeout,
        )
        logger.info(
            "Processing %s into %d outputs",
            request.input_path,
            len(request.outputs),
            extra={"run_id": run_id, "mode": self.mode.value},
        )

        readings = None
        reading_count = 0
        try:
            readings = self.source.read(request.input_path)
            batch: List[SensorReading] = []
            for reading in readings:
                reader.add_reading(reading)
                reading_count += 1
                batch.append(reading)
                if len(batch) >= self.batch_size:
                    await coordinator.process(tuple(batch))
                    batch = []
            if batch:
                await coordinator.process(tuple(batch))

            results = await coordinator.end()
            accumulation = reader.get_result()
        except (Exception, asyncio.CancelledError) as exc:
            logger.warning(
                "Run aborted; shutting down sinks",
                extra={"run_id": run_id, "reason": repr(exc), "reading_count": reading_count},
            )
            await self._shutdown_after_failure(coordinator, run_id)
            if isinstance(exc, (PipelineError, asyncio.CancelledError)):
                raise
            raise UnexpectedPipelineError(f"Unexpected error while distributing readings: {exc}") from exc
        finally:
            close = getattr(readings, "close", None)
            if close is not None:
                close()
            await coordinator.aclose()

        logger.info(
            "Run finished",
            extra={
                "run_id": run_id,
                "reading_count": reading_count,
                "batch_count": coordinator.batch_count,
                "processing_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return PipelineReport(accumulation=accumulation, outputs=tuple(results))

    @staticmethod
    async def _shutdown_after_failure(coordinator: FanOutCoordinator, run_id: Optional[str]) -> None:
        try:
            await coordinator.end()
        except Exception:
            # Keep the first failure; this one is only logged.
            logger.exception("Error while ending sinks after a failed run", extra={"run_id": run_id})


def build_pipeline(
    settings: Optional[Settings] = None,
    mode: Optional[ConcurrencyMode | str] = None,
    clock: Optional[Clock] = None,
) -> SensorPipeline:
    """Wire a pipeline from settings. Each run needs its own pipeline."""
    settings = settings or get_settings()
    factory = SinkFactory(namer=OutputNamer(clock), buffer_size=settings.write_buffer_size)
    return SensorPipeline(
        source=JsonReadingSource(buffer_size=settings.read_buffer_size),
        accumulator=SensorAccumulator(clock),
        factory=factory,
        mode=ConcurrencyMode(mode or settings.concurrency_mode),
        batch_size=settings.batch_size,
        worker_timeout=settings.worker_timeout,
        dispose_timeout=settings.dispose_timeout,
    )


def run_pipeline(
    request: ProcessRequest,
    pipeline: Optional[SensorPipeline] = None,
    run_id: Optional[str] = None,
) -> PipelineReport:
    """Synchronous entry point: one event loop per run."""
    pipeline = pipeline or build_pipeline()
    return asyncio.run(pipeline.process(request, run_id=run_id))
