from __future__ import annotations

import csv
from typing import Any, Optional, TextIO

from models.records import OutputFormat, SensorReading
from sinks.base import SensorSink, format_number

CSV_DELIMITER = ";"
CSV_HEADER = ("Index", "SensorId", "Value", "Zone", "IsActive")


class CsvSensorSink(SensorSink):
    """Semicolon separated rows, one per reading, under a fixed header."""

    output_format = OutputFormat.csv

    _rows: Optional[Any] = None

    def _write_header(self, handle: TextIO) -> None:
        self._rows = csv.writer(handle, delimiter=CSV_DELIMITER, lineterminator="\n")
        self._rows.writerow(CSV_HEADER)

    def _write_reading(self, handle: TextIO, reading: SensorReading) -> None:
        self._rows.writerow(
            (
                reading.index,
                reading.id,
                format_number(reading.value),
                reading.zone,
                reading.is_active,
            )
        )
