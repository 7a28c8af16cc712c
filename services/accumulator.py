"""Single-pass statistics over a stream of sensor readings."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Dict, Optional

from models.records import Accumulation, SensorReading, ZoneStat
from sinks.naming import Clock, SystemClock


@dataclass(frozen=True)
class _ZoneTally:
    total: float = 0.0
    count: int = 0
    active: int = 0

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0


class SensorAccumulator:
    """Running aggregates fed one reading at a time.

    Not safe for concurrent writers: the pipeline driver is the only caller.
    Call :meth:`reset` at the start of every run; it returns the accumulator
    so the run can hold on to it as its reader.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()
        self.reset()

    def reset(self) -> "SensorAccumulator":
        self._zones: Dict[str, _ZoneTally] = {}
        self._max_value = -math.inf
        self._max_value_sensor_id = ""
        self._running_sum = 0.0
        self._running_count = 0
        self._active_count = 0
        self._started_at = self._clock.now()
        return self

    def add_reading(self, reading: SensorReading) -> None:
        value = reading.value
        if value > self._max_value:
            self._max_value = value
            self._max_value_sensor_id = reading.id

        self._running_sum += value
        self._running_count += 1

        tally = self._zones.get(reading.zone, _ZoneTally())
        tally = replace(tally, total=tally.total + value, count=tally.count + 1)
        if reading.is_active:
            tally = replace(tally, active=tally.active + 1)
            self._active_count += 1
        self._zones[reading.zone] = tally

    def get_result(self) -> Accumulation:
        average = self._running_sum / self._running_count if self._running_count else 0.0
        zones = tuple(
            ZoneStat(
                zone=zone,
                average_measurement=round(tally.average, 2),
                active_sensors=tally.active,
            )
            for zone, tally in self._zones.items()
        )
        return Accumulation(
            max_value_sensor_id=self._max_value_sensor_id,
            global_average_value=round(average, 2),
            zones=zones,
            total_inputs=self._running_count,
            active_inputs=self._active_count,
            started_at=self._started_at,
            finished_at=self._clock.now(),
        )
