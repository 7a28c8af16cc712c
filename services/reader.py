"""Lazy decoding of sensor readings from a JSON document.

Two layouts are accepted: a single top-level JSON array of reading objects,
streamed element by element with an incremental decoder, or line-delimited
JSON with one object per line. Neither layout is loaded whole into memory.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterator, TextIO

from pydantic import ValidationError

from app.schemas import SensorReadingPayload
from models.errors import ReadingDecodeError, SourceNotFoundError
from models.records import SensorReading

logger = logging.getLogger(__name__)

DEFAULT_READ_BUFFER_SIZE = 32768
# Longest single array element the scanner buffers before giving up on it.
MAX_ITEM_CHARS = 1 << 20

_WHITESPACE = " \t\n\r"
# Decode errors this close to the end of the buffer may be a value cut by the
# chunk boundary (a partial literal, number or \uXXXX escape).
_TRUNCATION_TAIL = 16


class _ArrayScanner:
    """Yield the elements of a top-level JSON array read in chunks."""

    def __init__(self, handle: TextIO, chunk_size: int, max_item_chars: int = MAX_ITEM_CHARS) -> None:
        self._handle = handle
        self._chunk_size = chunk_size
        self._max_item_chars = max(chunk_size, max_item_chars)
        self._decoder = json.JSONDecoder()
        self._buffer = ""
        self._pos = 0
        self._eof = False

    def _refill(self) -> bool:
        if self._eof:
            return False
        chunk = self._handle.read(self._chunk_size)
        if not chunk:
            self._eof = True
            return False
        self._buffer = self._buffer[self._pos:] + chunk
        self._pos = 0
        return True

    def peek(self) -> str:
        """Next non-whitespace character, or "" at end of input."""
        while True:
            buffer = self._buffer
            pos = self._pos
            while pos < len(buffer) and buffer[pos] in _WHITESPACE:
                pos += 1
            self._pos = pos
            if pos < len(buffer):
                return buffer[pos]
            if not self._refill():
                return ""

    def _truncated(self, exc: json.JSONDecodeError) -> bool:
        """Whether ``exc`` may only mean the value continues in the next chunk."""
        if len(self._buffer) - self._pos >= self._max_item_chars:
            return False
        return exc.msg.startswith("Unterminated string") or len(self._buffer) - exc.pos <= _TRUNCATION_TAIL

    def _decode_value(self) -> Any:
        while True:
            try:
                value, end = self._decoder.raw_decode(self._buffer, self._pos)
            except json.JSONDecodeError as exc:
                if self._truncated(exc) and self._refill():
                    continue
                raise ReadingDecodeError(f"Invalid JSON format: {exc.msg}") from exc
            # A value touching the end of the buffer may continue in the next chunk.
            if end >= len(self._buffer) and self._refill():
                continue
            self._pos = end
            return value

    def __iter__(self) -> Iterator[Any]:
        if self.peek() != "[":
            raise ReadingDecodeError("Invalid JSON format: expected a top-level array of readings.")
        self._pos += 1
        if self.peek() == "]":
            self._pos += 1
        else:
            while True:
                if self.peek() == "":
                    raise ReadingDecodeError("Invalid JSON format: unexpected end of document.")
                yield self._decode_value()
                separator = self.peek()
                if separator == ",":
                    self._pos += 1
                    continue
                if separator == "]":
                    self._pos += 1
                    break
                if separator == "":
                    raise ReadingDecodeError("Invalid JSON format: unterminated array.")
                raise ReadingDecodeError(
                    f"Invalid JSON format: expected ',' or ']' but found {separator!r}."
                )
        if self.peek() != "":
            raise ReadingDecodeError("Invalid JSON format: unexpected data after the array.")


class JsonReadingSource:
    """Restartable source: every call to :meth:`read` opens the file anew."""

    def __init__(self, buffer_size: int = DEFAULT_READ_BUFFER_SIZE) -> None:
        self.buffer_size = buffer_size

    def read(self, path: str | Path) -> Iterator[SensorReading]:
        source = Path(path)
        try:
            handle = source.open("r", encoding="utf-8-sig")
        except FileNotFoundError as exc:
            raise SourceNotFoundError(f"Sensor file not found: {source}") from exc
        return self._iterate(handle, source)

    def _iterate(self, handle: TextIO, source: Path) -> Iterator[SensorReading]:
        with handle:
            scanner = _ArrayScanner(handle, self.buffer_size)
            first = scanner.peek()
            if first == "":
                logger.info("Sensor file is empty", extra={"file_path": str(source)})
                return
            if first == "[":
                for position, item in enumerate(scanner):
                    if item is None:
                        continue
                    yield self._to_reading(item, f"array item {position}")
            else:
                handle.seek(0)
                yield from self._iterate_lines(handle)

    def _iterate_lines(self, handle: TextIO) -> Iterator[SensorReading]:
        for line_number, line in enumerate(handle, start=1):
            candidate = line.strip()
            if not candidate:
                continue
            try:
                item = json.loads(candidate)
            except json.JSONDecodeError as exc:
                raise ReadingDecodeError(
                    f"Invalid JSON format on line {line_number}: {exc.msg}"
                ) from exc
            if item is None:
                continue
            yield self._to_reading(item, f"line {line_number}")

    @staticmethod
    def _to_reading(item: Any, location: str) -> SensorReading:
        if not isinstance(item, dict):
            raise ReadingDecodeError(
                f"Invalid reading at {location}: expected an object, got {type(item).__name__}."
            )
        try:
            return SensorReadingPayload.model_validate(item).to_reading()
        except ValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in exc.errors()
            )
            raise ReadingDecodeError(f"Invalid reading at {location}: {errors}") from exc
