from __future__ import annotations

from typing import Callable, Dict, Mapping, Optional

from models.errors import ConfigurationError
from models.records import OutputFormat
from sinks.base import DEFAULT_BUFFER_SIZE, SensorSink
from sinks.csv_sink import CsvSensorSink
from sinks.naming import OutputNamer
from sinks.xml_sink import XmlSensorSink

SinkConstructor = Callable[[OutputNamer, int], SensorSink]

SINK_TYPES: Mapping[OutputFormat, SinkConstructor] = {
    OutputFormat.csv: CsvSensorSink,
    OutputFormat.xml: XmlSensorSink,
}


class SinkFactory:
    """Resolve an output format to a fresh, single-use sink."""

    def __init__(
        self,
        namer: Optional[OutputNamer] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        registry: Optional[Mapping[OutputFormat, SinkConstructor]] = None,
    ) -> None:
        self.namer = namer or OutputNamer()
        self.buffer_size = buffer_size
        self._registry: Dict[OutputFormat, SinkConstructor] = dict(SINK_TYPES if registry is None else registry)

    def create_sink(self, output_format: OutputFormat) -> SensorSink:
        constructor = self._registry.get(output_format)
        if constructor is None:
            raise ConfigurationError(f"No sink is registered for output format {output_format!r}.")
        return constructor(self.namer, self.buffer_size)
