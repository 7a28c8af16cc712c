from __future__ import annotations

import csv
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path

import pytest

from app.schemas import SensorReadingPayload
from models.errors import ConfigurationError, SinkIOError
from models.records import OutputFormat, OutputRequest, SensorReading
from sinks.base import format_number
from sinks.csv_sink import CsvSensorSink
from sinks.factory import SinkFactory
from sinks.naming import FixedClock, OutputNamer
from sinks.xml_sink import XmlSensorSink

INSTANT = datetime(2024, 3, 9, 14, 5, 7, tzinfo=timezone.utc)

READINGS = (
    SensorReading(index=0, id="s-1", value=2000.5, zone="Z01", is_active=True),
    SensorReading(index=1, id="s-2", value=49999.25, zone="Z02", is_active=False),
)


def _namer() -> OutputNamer:
    return OutputNamer(FixedClock(INSTANT))


def test_generated_file_name_uses_timestamp_and_extension(tmp_path: Path) -> None:
    namer = _namer()

    assert namer.generate_file_name(OutputFormat.csv) == "sensor_data_20240309_140507.csv"
    assert namer.build_path(str(tmp_path), OutputFormat.xml) == tmp_path / "sensor_data_20240309_140507.xml"


def test_caller_file_name_gets_extension_and_stays_in_directory(tmp_path: Path) -> None:
    namer = _namer()

    assert namer.build_path(str(tmp_path), OutputFormat.csv, "daily") == tmp_path / "daily.csv"
    assert namer.build_path(str(tmp_path), OutputFormat.csv, "daily.CSV") == tmp_path / "daily.CSV"
    assert namer.build_path(str(tmp_path), OutputFormat.xml, "../escape") == tmp_path / "escape.xml"


def test_csv_sink_writes_header_and_rows(tmp_path: Path) -> None:
    sink = CsvSensorSink(_namer())
    sink.open(OutputRequest(str(tmp_path), OutputFormat.csv))
    sink.append(READINGS)
    response = sink.finalize()
    sink.dispose()

    assert response.output_format is OutputFormat.csv
    path = Path(response.file_path)
    assert path.name == "sensor_data_20240309_140507.csv"
    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle, delimiter=";"))
    assert rows == [
        ["Index", "SensorId", "Value", "Zone", "IsActive"],
        ["0", "s-1", "2000.5", "Z01", "True"],
        ["1", "s-2", "49999.25", "Z02", "False"],
    ]


def test_csv_sink_quotes_delimiters_inside_fields(tmp_path: Path) -> None:
    sink = CsvSensorSink(_namer())
    sink.open(OutputRequest(str(tmp_path), OutputFormat.csv, file_name="quoted"))
    sink.append([SensorReading(index=7, id="a;b", value=1.0, zone='Z"1', is_active=True)])
    path = Path(sink.finalize().file_path)

    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle, delimiter=";"))
    assert rows[1] == ["7", "a;b", "1.0", 'Z"1', "True"]


def test_xml_sink_produces_well_formed_document(tmp_path: Path) -> None:
    sink = XmlSensorSink(_namer())
    sink.open(OutputRequest(str(tmp_path), OutputFormat.xml))
    sink.append(READINGS[:1])
    sink.append(READINGS[1:])
    response = sink.finalize()

    root = ET.parse(response.file_path).getroot()
    assert root.tag == "SensorReadings"
    items = root.findall("SensorReading")
    assert len(items) == 2
    assert [child.tag for child in items[0]] == ["Index", "Id", "Value", "Zone", "IsActive"]
    assert items[0].findtext("Id") == "s-1"
    assert items[0].findtext("Value") == "2000.5"
    assert items[0].findtext("IsActive") == "true"
    assert items[1].findtext("IsActive") == "false"


def test_xml_sink_escapes_text_and_writes_empty_elements(tmp_path: Path) -> None:
    sink = XmlSensorSink(_namer())
    sink.open(OutputRequest(str(tmp_path), OutputFormat.xml))
    sink.append([SensorReading(index=3, id="<a&b>", value=0.0, zone="", is_active=False)])
    path = Path(sink.finalize().file_path)

    content = path.read_text(encoding="utf-8")
    assert "<Zone />" in content
    item = ET.parse(path).getroot().find("SensorReading")
    assert item.findtext("Id") == "<a&b>"
    assert item.findtext("Zone") == ""


def test_empty_run_still_produces_valid_documents(tmp_path: Path) -> None:
    csv_sink = CsvSensorSink(_namer())
    xml_sink = XmlSensorSink(_namer())
    csv_sink.open(OutputRequest(str(tmp_path), OutputFormat.csv))
    xml_sink.open(OutputRequest(str(tmp_path), OutputFormat.xml))

    csv_path = Path(csv_sink.finalize().file_path)
    xml_path = Path(xml_sink.finalize().file_path)

    assert csv_path.read_text(encoding="utf-8") == "Index;SensorId;Value;Zone;IsActive\n"
    assert ET.parse(xml_path).getroot().findall("SensorReading") == []


def test_open_failure_makes_sink_inactive(tmp_path: Path) -> None:
    sink = CsvSensorSink(_namer())

    with pytest.raises(SinkIOError) as excinfo:
        sink.open(OutputRequest(str(tmp_path / "missing"), OutputFormat.csv))

    assert "Failed to open CSV output" in str(excinfo.value)
    assert sink.is_active is False
    sink.append(READINGS)  # dropped without raising
    with pytest.raises(SinkIOError):
        sink.finalize()
    sink.dispose()
    assert not (tmp_path / "missing").exists()


def test_lifecycle_methods_reject_repeated_calls(tmp_path: Path) -> None:
    sink = CsvSensorSink(_namer())
    with pytest.raises(RuntimeError):
        sink.finalize()

    sink.open(OutputRequest(str(tmp_path), OutputFormat.csv))
    with pytest.raises(RuntimeError):
        sink.open(OutputRequest(str(tmp_path), OutputFormat.csv))

    sink.finalize()
    with pytest.raises(RuntimeError):
        sink.finalize()

    sink.append(READINGS)  # finalized sinks drop writes
    sink.dispose()
    sink.dispose()


def test_dispose_without_finalize_removes_partial_file(tmp_path: Path) -> None:
    with XmlSensorSink(_namer()) as sink:
        sink.open(OutputRequest(str(tmp_path), OutputFormat.xml))
        sink.append(READINGS)
        path = sink.file_path
        assert path is not None and path.exists()

    assert not path.exists()


def test_dispose_keeps_completed_file(tmp_path: Path) -> None:
    sink = CsvSensorSink(_namer())
    sink.open(OutputRequest(str(tmp_path), OutputFormat.csv))
    path = Path(sink.finalize().file_path)

    sink.dispose()

    assert path.exists()


class _BrokenCsvSink(CsvSensorSink):
    def _write_reading(self, handle, reading) -> None:
        raise OSError("disk full")


def test_append_failure_is_reported_once_and_partial_file_removed(tmp_path: Path) -> None:
    sink = _BrokenCsvSink(_namer())
    sink.open(OutputRequest(str(tmp_path), OutputFormat.csv))

    with pytest.raises(SinkIOError, match="disk full"):
        sink.append(READINGS)
    sink.append(READINGS)

    with pytest.raises(SinkIOError) as excinfo:
        sink.finalize()
    assert "Partial output removed" in str(excinfo.value)
    assert list(tmp_path.iterdir()) == []


def test_factory_returns_fresh_instances() -> None:
    factory = SinkFactory(namer=_namer())

    first = factory.create_sink(OutputFormat.csv)
    second = factory.create_sink(OutputFormat.csv)

    assert isinstance(first, CsvSensorSink)
    assert isinstance(factory.create_sink(OutputFormat.xml), XmlSensorSink)
    assert first is not second


def test_factory_rejects_unregistered_format() -> None:
    factory = SinkFactory(registry={OutputFormat.csv: CsvSensorSink})

    with pytest.raises(ConfigurationError, match="xml"):
        factory.create_sink(OutputFormat.xml)


class _FooterFailsXmlSink(XmlSensorSink):
    def _write_footer(self, handle) -> None:
        raise OSError("no space left on device")


class _UndeletableNamer(OutputNamer):
    @staticmethod
    def try_delete(path: Path) -> bool:
        return False


def test_finalize_failure_removes_partial_file(tmp_path: Path) -> None:
    sink = _FooterFailsXmlSink(_namer())
    sink.open(OutputRequest(str(tmp_path), OutputFormat.xml))
    sink.append(READINGS)

    with pytest.raises(SinkIOError) as excinfo:
        sink.finalize()

    message = str(excinfo.value)
    assert message.startswith("Failed to finalize XML output")
    assert "no space left on device" in message
    assert message.endswith("Partial output removed.")
    assert list(tmp_path.iterdir()) == []


def test_finalize_failure_asks_for_manual_cleanup_when_delete_fails(tmp_path: Path) -> None:
    sink = _FooterFailsXmlSink(_UndeletableNamer(FixedClock(INSTANT)))
    sink.open(OutputRequest(str(tmp_path), OutputFormat.xml))

    with pytest.raises(SinkIOError) as excinfo:
        sink.finalize()

    path = tmp_path / "sensor_data_20240309_140507.xml"
    assert str(excinfo.value).endswith(f"Please delete the partial file manually: {path}")
    assert path.exists()


def test_xml_sink_drops_lone_surrogates(tmp_path: Path) -> None:
    sink = XmlSensorSink(_namer())
    sink.open(OutputRequest(str(tmp_path), OutputFormat.xml))
    sink.append([SensorReading(index=0, id="a\ud800b", value=1.0, zone="\udfffZ01", is_active=True)])
    path = Path(sink.finalize().file_path)

    item = ET.parse(path).getroot().find("SensorReading")
    assert item.findtext("Id") == "ab"
    assert item.findtext("Zone") == "Z01"


def test_numbers_use_shortest_single_precision_text(tmp_path: Path) -> None:
    reading = SensorReadingPayload(index=0, id="s", value="1234.56").to_reading()
    sink = CsvSensorSink(_namer())
    sink.open(OutputRequest(str(tmp_path), OutputFormat.csv))
    sink.append([reading])
    path = Path(sink.finalize().file_path)

    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle, delimiter=";"))
    assert rows[1][2] == "1234.56"
    assert format_number(0.0) == "0.0"
    assert format_number(10.0) == "10.0"
