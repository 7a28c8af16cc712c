"""Sink lifecycle shared by every output format.

A sink is single-use: ``open`` once, ``append`` any number of batches,
``finalize`` once, and ``dispose`` whenever the owner is done with it.
Subclasses only describe the document layout through the ``_write_*`` hooks;
file handling, failure bookkeeping and partial-file cleanup live here.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import ClassVar, Iterable, Optional, TextIO

from models.errors import SinkIOError
from models.records import OutputFormat, OutputRequest, SensorReading, WriteResponse, single_precision
from sinks.naming import OutputNamer

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 65536


def format_number(value: float) -> str:
    """Locale-independent rendering with a ``.`` decimal separator.

    Picks the shortest text that reads back as the same single-precision
    value, so ``1234.56`` stays ``1234.56`` rather than its binary expansion.
    """
    value = float(value)
    for digits in range(1, 10):
        candidate = float(f"{value:.{digits}g}")
        if single_precision(candidate) == value:
            return repr(candidate)
    return repr(value)


class SensorSink(ABC):
    output_format: ClassVar[OutputFormat]

    def __init__(self, namer: Optional[OutputNamer] = None, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self._namer = namer or OutputNamer()
        self._buffer_size = buffer_size
        self._handle: Optional[TextIO] = None
        self._path: Optional[Path] = None
        self._error: Optional[str] = None
        self._opened = False
        self._created = False
        self._finalized = False
        self._completed = False
        self._disposed = False

    # ------------------------------------------------------------------
    @property
    def file_path(self) -> Optional[Path]:
        return self._path

    @property
    def is_active(self) -> bool:
        return self._handle is not None and self._error is None and not self._finalized

    # ------------------------------------------------------------------
    def open(self, request: OutputRequest) -> None:
        if self._opened:
            raise RuntimeError(f"{type(self).__name__}.open() called twice")
        self._opened = True

        path = self._namer.build_path(request.destination_path, self.output_format, request.file_name)
        self._path = path
        label = self.output_format.label
        try:
            handle = path.open("w", encoding="utf-8", newline="", buffering=self._buffer_size)
        except OSError as exc:
            self._error = f"Failed to open {label} output {path}: {exc}"
            raise SinkIOError(self._error) from exc

        self._handle = handle
        self._created = True
        try:
            self._write_header(handle)
            handle.flush()
        except (OSError, ValueError) as exc:
            self._fail(f"Failed to write {label} header to {path}: {exc}")
            raise SinkIOError(self._error) from exc

    def append(self, readings: Iterable[SensorReading]) -> None:
        """Write a batch. Silently dropped when the sink is not active."""
        handle = self._handle
        if handle is None or not self.is_active:
            return
        try:
            for reading in readings:
                self._write_reading(handle, reading)
            handle.flush()
        except (OSError, ValueError) as exc:
            self._fail(f"Failed to write {self.output_format.label} output {self._path}: {exc}")
            raise SinkIOError(self._error) from exc

    def finalize(self) -> WriteResponse:
        if self._finalized:
            raise RuntimeError(f"{type(self).__name__}.finalize() called twice")
        if not self._opened:
            raise RuntimeError(f"{type(self).__name__}.finalize() called before open()")
        self._finalized = True

        handle = self._handle
        if self._error is None and handle is not None:
            try:
                self._write_footer(handle)
                handle.flush()
                handle.close()
            except (OSError, ValueError) as exc:
                self._error = f"Failed to finalize {self.output_format.label} output {self._path}: {exc}"
            else:
                self._handle = None
                self._completed = True
                return WriteResponse(file_path=str(self._path), output_format=self.output_format)

        self._release()
        raise SinkIOError(self._discard_partial(self._error or "Sink finalized without a usable output"))

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._release()
        if self._created and not self._completed and self._path is not None:
            self._namer.try_delete(self._path)

    def __enter__(self) -> "SensorSink":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    @abstractmethod
    def _write_header(self, handle: TextIO) -> None:
        """Write whatever precedes the first record."""

    @abstractmethod
    def _write_reading(self, handle: TextIO, reading: SensorReading) -> None:
        """Write one record."""

    def _write_footer(self, handle: TextIO) -> None:
        """Write whatever closes the document. Nothing by default."""

    # ------------------------------------------------------------------
    def _fail(self, message: str) -> None:
        self._error = message
        logger.warning(
            "Sink failed",
            extra={"output_format": self.output_format.value, "file_path": str(self._path), "reason": message},
        )
        self._release()

    def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except (OSError, ValueError) as exc:
            logger.debug(
                "Error while closing sink handle",
                extra={"file_path": str(self._path), "reason": str(exc)},
            )

    def _discard_partial(self, message: str) -> str:
        if not self._created or self._path is None:
            return message
        if self._namer.try_delete(self._path):
            return f"{message}. Partial output removed."
        return f"{message}. Please delete the partial file manually: {self._path}"
