from __future__ import annotations

import re
from typing import TextIO
from xml.sax.saxutils import escape

from models.records import OutputFormat, SensorReading
from sinks.base import SensorSink, format_number

ROOT_ELEMENT = "SensorReadings"
ITEM_ELEMENT = "SensorReading"
INDENT = "  "

# Code points XML 1.0 does not allow, even when escaped. Lone surrogates
# cannot be encoded as UTF-8 either.
_ILLEGAL_XML_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def _element(name: str, text: str, depth: int) -> str:
    padding = INDENT * depth
    if not text:
        return f"{padding}<{name} />\n"
    return f"{padding}<{name}>{escape(_ILLEGAL_XML_CHARS.sub('', text))}</{name}>\n"


class XmlSensorSink(SensorSink):
    """Streams an indented ``<SensorReadings>`` document, one element per reading."""

    output_format = OutputFormat.xml

    def _write_header(self, handle: TextIO) -> None:
        handle.write('<?xml version="1.0" encoding="utf-8"?>\n')
        handle.write(f"<{ROOT_ELEMENT}>\n")

    def _write_reading(self, handle: TextIO, reading: SensorReading) -> None:
        handle.write(
            "".join(
                (
                    f"{INDENT}<{ITEM_ELEMENT}>\n",
                    _element("Index", str(reading.index), 2),
                    _element("Id", reading.id, 2),
                    _element("Value", format_number(reading.value), 2),
                    _element("Zone", reading.zone, 2),
                    _element("IsActive", "true" if reading.is_active else "false", 2),
                    f"{INDENT}</{ITEM_ELEMENT}>\n",
                )
            )
        )

    def _write_footer(self, handle: TextIO) -> None:
        handle.write(f"</{ROOT_ELEMENT}>\n")
