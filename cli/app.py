from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn

from cli.client import ApiClient
from cli.config import CLIConfig, load_config, load_process_request
from cli.render import render_run, report_payload
from logging_config import configure_logging
from models.errors import PipelineError
from models.records import ConcurrencyMode, OutputFormat, OutputRequest, ProcessRequest
from services.generator import write_dataset
from services.pipeline import build_pipeline, run_pipeline
from settings import get_settings


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Stream sensor readings into statistics and concurrent CSV/XML outputs.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


def _build_request(
    config_file: Optional[Path],
    input_path: Optional[Path],
    csv_dirs: Optional[List[Path]],
    xml_dirs: Optional[List[Path]],
) -> ProcessRequest:
    if config_file is not None:
        return load_process_request(config_file)
    if input_path is None:
        raise typer.BadParameter("Provide either --config or --input.")
    outputs = [OutputRequest(str(path), OutputFormat.csv) for path in csv_dirs or []]
    outputs += [OutputRequest(str(path), OutputFormat.xml) for path in xml_dirs or []]
    return ProcessRequest(input_path=str(input_path), outputs=tuple(outputs))


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to SENSOR_API_BASE_URL env or http://localhost:8000).",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between status checks when waiting for completion.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Maximum seconds to wait when polling for results.",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Emit pipeline logs to stderr at this level (e.g. INFO, DEBUG).",
    ),
) -> None:
    """Entry point for the CLI."""
    if log_level:
        configure_logging(level=log_level.upper())
    config = load_config(
        base_url=base_url,
        poll_interval=poll_interval,
        poll_timeout=timeout,
    )
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("process")
def process_command(
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", exists=True, dir_okay=False, readable=True,
        help="Process configuration JSON (JsonFilePath + OutputRequests).",
    ),
    input_path: Optional[Path] = typer.Option(None, "--input", "-i", help="JSON readings file."),
    csv_dirs: Optional[List[Path]] = typer.Option(None, "--csv", help="Directory for a CSV output (repeatable)."),
    xml_dirs: Optional[List[Path]] = typer.Option(None, "--xml", help="Directory for an XML output (repeatable)."),
    mode: Optional[ConcurrencyMode] = typer.Option(
        None, "--mode", "-m", case_sensitive=False, help="Sink workers: asyncio tasks or threads."
    ),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Readings per fan-out batch."),
) -> None:
    """Process a readings file locally and print statistics and outputs."""
    request = _build_request(config_file, input_path, csv_dirs, xml_dirs)
    settings = get_settings()
    if batch_size is not None:
        settings = replace(settings, batch_size=batch_size)
    pipeline = build_pipeline(settings, mode=mode)

    typer.echo(
        f"Processing {request.input_path} into {len(request.outputs)} outputs "
        f"using {pipeline.mode.value} workers ..."
    )
    try:
        report = run_pipeline(request, pipeline=pipeline)
    except PipelineError as exc:
        typer.secho(f"Processing failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo()
    render_run(report_payload(report))


@app.command("generate")
def generate_command(
    zones: int = typer.Argument(..., min=1, help="Number of zones (Z01, Z02, ...)."),
    items_per_zone: int = typer.Argument(..., min=1, help="Readings generated per zone."),
    output: Path = typer.Argument(..., dir_okay=False, help="Destination JSON file."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for reproducible datasets."),
) -> None:
    """Write a synthetic readings file."""
    summary = write_dataset(output, zones, items_per_zone, seed=seed)
    typer.secho(f"Generated sensor data file: {summary.path}", fg=typer.colors.GREEN)
    typer.echo(f"Total sensors: {summary.total}")
    typer.echo(f"Zones: {len(summary.zones)} ({', '.join(summary.zones)})")
    typer.echo(f"Items per zone: {items_per_zone}")
    typer.echo(f"Active sensors: {summary.active}")
    typer.echo(f"Inactive sensors: {summary.inactive}")


@app.command("submit")
def submit_command(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", exists=True, dir_okay=False, readable=True,
        help="Process configuration JSON (JsonFilePath + OutputRequests).",
    ),
    input_path: Optional[Path] = typer.Option(None, "--input", "-i", help="JSON readings file."),
    csv_dirs: Optional[List[Path]] = typer.Option(None, "--csv", help="Directory for a CSV output (repeatable)."),
    xml_dirs: Optional[List[Path]] = typer.Option(None, "--xml", help="Directory for an XML output (repeatable)."),
    mode: Optional[ConcurrencyMode] = typer.Option(None, "--mode", "-m", case_sensitive=False),
    wait: bool = typer.Option(
        False,
        "--wait/--no-wait",
        help="Wait for the run to finish and display the result.",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Override poll interval while waiting.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Override timeout while waiting.",
    ),
) -> None:
    """Submit a run to the service."""
    state = _get_state(ctx)
    request = _build_request(config_file, input_path, csv_dirs, xml_dirs)
    payload = {
        "input_path": str(Path(request.input_path).resolve()),
        "outputs": [
            {
                "destination_path": str(Path(output.destination_path).resolve()),
                "output_format": output.output_format.value,
                "file_name": output.file_name,
            }
            for output in request.outputs
        ],
        "concurrency_mode": mode.value if mode else None,
    }
    typer.echo(f"Submitting {payload['input_path']} to {state.config.base_url} ...")
    run_id = state.client.submit_run(payload)
    typer.secho(f"Run accepted. run_id={run_id}", fg=typer.colors.GREEN)

    if not wait:
        return

    interval = poll_interval if poll_interval is not None else state.config.poll_interval
    poll_timeout = timeout if timeout is not None else state.config.poll_timeout
    typer.echo(f"Waiting for run (interval={interval}s, timeout={poll_timeout}s)...")
    result = state.client.poll_run(run_id, interval=interval, timeout=poll_timeout)
    typer.echo()
    render_run(result)


@app.command("result")
def result_command(
    ctx: typer.Context,
    run_id: str = typer.Argument(..., help="Identifier returned from the submit command."),
) -> None:
    """Fetch status, statistics and outputs for a run."""
    state = _get_state(ctx)
    payload = state.client.get_run(run_id)
    render_run(payload)


_STATUS_COLOURS = {"completed": typer.colors.GREEN, "failed": typer.colors.RED}


@app.command("runs")
def runs_command(ctx: typer.Context) -> None:
    """List runs known to the service, newest first."""
    state = _get_state(ctx)
    records = state.client.list_runs()
    if not records:
        typer.echo("No runs recorded.")
        return
    for record in records:
        status = str(record.get("status"))
        typer.secho(
            f"{record.get('run_id')}  {status:<9}  {record.get('input_path')}",
            fg=_STATUS_COLOURS.get(status),
        )


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind."),
    port: int = typer.Option(8000, "--port", min=1, max=65535, help="Port to listen on."),
    reload: bool = typer.Option(False, "--reload/--no-reload", help="Restart on code changes."),
) -> None:
    """Start the HTTP service."""
    typer.echo(f"Starting sensor fan-out service on {host}:{port}")
    uvicorn.run("app.main:app", host=host, port=port, reload=reload)
