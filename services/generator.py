"""Synthetic sensor datasets for local runs and load tests."""

from __future__ import annotations

import json
import random
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

MIN_VALUE = 2000.0
MAX_VALUE = 50000.0
ACTIVE_RATIO = 0.7


@dataclass(frozen=True)
class DatasetSummary:
    path: str
    total: int
    active: int
    zones: List[str]

    @property
    def inactive(self) -> int:
        return self.total - self.active


def zone_name(number: int) -> str:
    return f"Z{number:02d}"


def generate_readings(
    zones: int,
    items_per_zone: int,
    rng: Optional[random.Random] = None,
) -> Iterator[Dict[str, Any]]:
    """Yield raw reading objects zone by zone.

    Values are written as strings with two decimals, the way upstream
    producers emit them.
    """
    if zones <= 0 or items_per_zone <= 0:
        raise ValueError("zones and items_per_zone must be positive integers.")
    rng = rng or random.Random()
    index = 0
    for zone in range(1, zones + 1):
        for _ in range(items_per_zone):
            value = rng.uniform(MIN_VALUE, MAX_VALUE)
            yield {
                "index": index,
                "id": str(uuid.UUID(int=rng.getrandbits(128), version=4)),
                "isActive": rng.random() < ACTIVE_RATIO,
                "zone": zone_name(zone),
                "value": f"{value:.2f}",
            }
            index += 1


def write_dataset(
    path: str | Path,
    zones: int,
    items_per_zone: int,
    seed: Optional[int] = None,
) -> DatasetSummary:
    """Stream a JSON array of generated readings to ``path``."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    rng = random.Random(seed)

    total = 0
    active = 0
    with target.open("w", encoding="utf-8") as handle:
        handle.write("[")
        for item in generate_readings(zones, items_per_zone, rng):
            handle.write(",\n  " if total else "\n  ")
            handle.write(json.dumps(item))
            total += 1
            active += int(item["isActive"])
        handle.write("\n]\n")

    return DatasetSummary(
        path=str(target),
        total=total,
        active=active,
        zones=[zone_name(zone) for zone in range(1, zones + 1)],
    )
