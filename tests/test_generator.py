from __future__ import annotations

import json
import random
from pathlib import Path

import pytest

from services.generator import MAX_VALUE, MIN_VALUE, generate_readings, write_dataset, zone_name
from services.reader import JsonReadingSource


def test_zone_names_are_zero_padded() -> None:
    assert zone_name(1) == "Z01"
    assert zone_name(12) == "Z12"


def test_generated_readings_cover_every_zone() -> None:
    items = list(generate_readings(3, 4, rng=random.Random(7)))

    assert len(items) == 12
    assert [item["index"] for item in items] == list(range(12))
    assert [item["zone"] for item in items[::4]] == ["Z01", "Z02", "Z03"]
    for item in items:
        value = float(item["value"])
        assert MIN_VALUE <= value <= MAX_VALUE
        assert item["value"] == f"{value:.2f}"
    assert len({item["id"] for item in items}) == 12


def test_same_seed_produces_same_dataset(tmp_path: Path) -> None:
    first = write_dataset(tmp_path / "a.json", 2, 5, seed=42)
    second = write_dataset(tmp_path / "b.json", 2, 5, seed=42)

    assert (tmp_path / "a.json").read_text() == (tmp_path / "b.json").read_text()
    assert first.active == second.active


def test_written_dataset_is_readable_by_the_source(tmp_path: Path) -> None:
    summary = write_dataset(tmp_path / "nested" / "data.json", 2, 10, seed=1)

    readings = list(JsonReadingSource().read(summary.path))

    assert summary.total == 20
    assert summary.zones == ["Z01", "Z02"]
    assert len(readings) == 20
    assert sum(reading.is_active for reading in readings) == summary.active
    assert summary.inactive == 20 - summary.active
    assert isinstance(json.loads(Path(summary.path).read_text()), list)


def test_counts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        list(generate_readings(0, 1))
