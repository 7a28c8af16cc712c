from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

from app.schemas import AccumulationSchema, SinkResultSchema
from models.records import PipelineReport


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def report_payload(report: PipelineReport) -> Dict[str, Any]:
    """Shape a local report like the API's run record."""
    return {
        "status": "completed",
        "accumulation": AccumulationSchema.from_accumulation(report.accumulation).model_dump(mode="json"),
        "outputs": [SinkResultSchema.from_result(result).model_dump(mode="json") for result in report.outputs],
    }


def render_run(payload: Dict[str, Any]) -> None:
    echo_heading("Run")
    echo_key_values(
        [
            (key, payload.get(key))
            for key in ("run_id", "status", "input_path", "submitted_at", "finished_at", "processing_ms")
            if key in payload
        ]
    )
    if payload.get("error"):
        typer.secho(f"error: {payload['error']}", fg=typer.colors.RED)

    accumulation = payload.get("accumulation") or {}
    typer.echo()
    echo_heading("Statistics")
    if accumulation:
        echo_key_values(
            [
                ("total_inputs", accumulation.get("total_inputs")),
                ("active_inputs", accumulation.get("active_inputs")),
                ("max_value_sensor_id", accumulation.get("max_value_sensor_id")),
                ("global_average_value", f"{accumulation.get('global_average_value', 0.0):.2f}"),
            ]
        )
        zones = accumulation.get("zones") or []
        typer.echo(f"zones: {len(zones)}")
        for zone in zones:
            typer.echo(
                f"  - {zone.get('zone')}: avg={zone.get('average_measurement'):.2f}, "
                f"active_sensors={zone.get('active_sensors')}"
            )
    else:
        typer.echo("No statistics available.")

    outputs = payload.get("outputs") or []
    typer.echo()
    echo_heading("Outputs")
    if not outputs:
        typer.echo("No outputs recorded.")
    for output in outputs:
        label = str(output.get("output_format", "")).upper()
        if output.get("success"):
            typer.secho(f"  - {label} ok: {output.get('file_path')}", fg=typer.colors.GREEN)
        else:
            typer.secho(f"  - {label} failed: {output.get('error_message')}", fg=typer.colors.RED)
