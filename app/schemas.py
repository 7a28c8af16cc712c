"""Pydantic schemas for the input document and the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.records import (
    Accumulation,
    ConcurrencyMode,
    OutputFormat,
    OutputRequest,
    ProcessRequest,
    SensorReading,
    SinkResult,
    single_precision,
)


class SensorReadingPayload(BaseModel):
    """One record of the input JSON document.

    Numbers given as strings are accepted; missing fields take the same
    defaults the producer would have serialized.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    index: int = 0
    id: Optional[str] = ""
    is_active: bool = Field(default=False, alias="isActive")
    zone: Optional[str] = ""
    value: float = 0.0

    def to_reading(self) -> SensorReading:
        return SensorReading(
            index=self.index,
            id=self.id or "",
            value=single_precision(self.value),
            zone=self.zone or "",
            is_active=self.is_active,
        )


class RunStatus(str, Enum):
    """Lifecycle states of a background run."""

    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"


class OutputRequestSchema(BaseModel):
    destination_path: str = Field(..., description="Existing directory the sink writes into.")
    output_format: OutputFormat
    file_name: Optional[str] = Field(
        default=None, description="Overrides the generated sensor_data_<timestamp> file name."
    )

    def to_request(self) -> OutputRequest:
        return OutputRequest(
            destination_path=self.destination_path,
            output_format=self.output_format,
            file_name=self.file_name,
        )


class ProcessRequestSchema(BaseModel):
    """Body of ``POST /runs``."""

    input_path: str = Field(..., description="Path of the JSON readings document.")
    outputs: List[OutputRequestSchema] = Field(default_factory=list)
    concurrency_mode: Optional[ConcurrencyMode] = Field(
        default=None, description="Overrides SENSOR_CONCURRENCY_MODE for this run."
    )

    def to_request(self) -> ProcessRequest:
        return ProcessRequest(
            input_path=self.input_path,
            outputs=tuple(output.to_request() for output in self.outputs),
        )


class RunSubmitResponse(BaseModel):
    run_id: str = Field(..., description="Generated identifier for the submitted run.")


class ZoneStatSchema(BaseModel):
    zone: str
    average_measurement: float
    active_sensors: int = Field(..., ge=0)


class AccumulationSchema(BaseModel):
    """Aggregate statistics of a completed run."""

    max_value_sensor_id: str
    global_average_value: float
    total_inputs: int = Field(default=0, ge=0)
    active_inputs: int = Field(default=0, ge=0)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    zones: List[ZoneStatSchema] = Field(default_factory=list)

    @classmethod
    def from_accumulation(cls, accumulation: Accumulation) -> "AccumulationSchema":
        return cls(
            max_value_sensor_id=accumulation.max_value_sensor_id,
            global_average_value=accumulation.global_average_value,
            total_inputs=accumulation.total_inputs,
            active_inputs=accumulation.active_inputs,
            started_at=accumulation.started_at,
            finished_at=accumulation.finished_at,
            zones=[
                ZoneStatSchema(
                    zone=stat.zone,
                    average_measurement=stat.average_measurement,
                    active_sensors=stat.active_sensors,
                )
                for stat in accumulation.zones
            ],
        )


class SinkResultSchema(BaseModel):
    success: bool
    output_format: OutputFormat
    file_path: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_result(cls, result: SinkResult) -> "SinkResultSchema":
        return cls(
            success=result.success,
            output_format=result.output_format,
            file_path=result.file_path,
            error_message=result.error_message,
        )


class RunRecord(BaseModel):
    """Full record representing a submitted run."""

    run_id: str
    status: RunStatus
    input_path: str
    submitted_at: datetime
    finished_at: Optional[datetime] = None
    processing_ms: Optional[int] = Field(
        default=None, description="Duration in milliseconds from start to finish."
    )
    accumulation: Optional[AccumulationSchema] = None
    outputs: List[SinkResultSchema] = Field(default_factory=list)
    error: Optional[str] = None
