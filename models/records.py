"""Domain models shared across services."""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Tuple


def single_precision(value: float) -> float:
    """Round ``value`` to the nearest IEEE 754 single-precision float.

    Magnitudes beyond the single-precision range become infinities.
    """
    try:
        return struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


class OutputFormat(str, Enum):
    """Serialization formats a sink can produce."""

    csv = "csv"
    xml = "xml"

    @property
    def extension(self) -> str:
        return f".{self.value}"

    @property
    def label(self) -> str:
        return self.value.upper()


class ConcurrencyMode(str, Enum):
    """How sink workers are scheduled: asyncio tasks or OS threads."""

    task = "task"
    thread = "thread"


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A single sensor observation decoded from the input document.

    ``value`` holds single-precision data; see :func:`single_precision`.
    """

    index: int
    id: str
    value: float
    zone: str
    is_active: bool


Batch = Tuple[SensorReading, ...]


@dataclass(frozen=True, slots=True)
class ZoneStat:
    zone: str
    average_measurement: float
    active_sensors: int


@dataclass(frozen=True)
class Accumulation:
    """Aggregate statistics snapshot for one run."""

    max_value_sensor_id: str
    global_average_value: float
    zones: Tuple[ZoneStat, ...] = ()
    total_inputs: int = 0
    active_inputs: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration(self) -> timedelta:
        if self.started_at is None or self.finished_at is None:
            return timedelta(0)
        return self.finished_at - self.started_at

    def zone(self, name: str) -> Optional[ZoneStat]:
        for stat in self.zones:
            if stat.zone == name:
                return stat
        return None


@dataclass(frozen=True, slots=True)
class OutputRequest:
    """Where one sink writes and in which format.

    ``file_name`` overrides the generated timestamped name; the format
    extension is appended when missing.
    """

    destination_path: str
    output_format: OutputFormat
    file_name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class WriteResponse:
    file_path: str
    output_format: OutputFormat


@dataclass(frozen=True, slots=True)
class SinkResult:
    """Terminal outcome of one sink, produced exactly once."""

    success: bool
    output_format: OutputFormat
    file_path: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, output_format: OutputFormat, message: str) -> "SinkResult":
        return cls(success=False, output_format=output_format, error_message=message)


@dataclass(frozen=True)
class ProcessRequest:
    input_path: str
    outputs: Tuple[OutputRequest, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PipelineReport:
    """Successful run: aggregate statistics plus one result per output."""

    accumulation: Accumulation
    outputs: Tuple[SinkResult, ...]

    @property
    def failed_outputs(self) -> Tuple[SinkResult, ...]:
        return tuple(result for result in self.outputs if not result.success)
