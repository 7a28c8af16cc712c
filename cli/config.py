from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from models.records import OutputFormat, OutputRequest, ProcessRequest

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_TIMEOUT = 120.0

_BASE_URL_ENV = "SENSOR_API_BASE_URL"
_POLL_INTERVAL_ENV = "SENSOR_CLI_POLL_INTERVAL"
_TIMEOUT_ENV = "SENSOR_CLI_POLL_TIMEOUT"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    poll_timeout: float = DEFAULT_TIMEOUT


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(
    base_url: Optional[str] = None,
    poll_interval: Optional[float] = None,
    poll_timeout: Optional[float] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    if poll_interval is None:
        poll_interval = _read_float(os.getenv(_POLL_INTERVAL_ENV), DEFAULT_POLL_INTERVAL)
    if poll_timeout is None:
        poll_timeout = _read_float(os.getenv(_TIMEOUT_ENV), DEFAULT_TIMEOUT)
    return CLIConfig(
        base_url=url.rstrip("/"),
        poll_interval=poll_interval,
        poll_timeout=poll_timeout,
    )


_INPUT_KEYS = ("jsonfilepath", "input_path")
_OUTPUTS_KEYS = ("outputrequests", "outputs")
_DESTINATION_KEYS = ("outputfilepath", "destination_path")
_FORMAT_KEYS = ("outputtype", "output_format")


def _first(data: Dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _lower_keys(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise typer.BadParameter("Process configuration must be a JSON object.")
    return {str(key).lower(): value for key, value in data.items()}


def load_process_request(path: Path) -> ProcessRequest:
    """Read a process configuration file.

    Keys are matched case-insensitively, so both
    ``{"JsonFilePath": ..., "OutputRequests": [{"OutputFilePath": ..., "OutputType": "Csv"}]}``
    and the snake_case API field names are accepted.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Failed to load configuration from {path}: {exc}") from exc

    data = _lower_keys(raw)
    input_path = _first(data, _INPUT_KEYS)
    if not isinstance(input_path, str):
        raise typer.BadParameter(f"{path} does not define the JSON file path to process.")

    outputs = []
    for index, entry in enumerate(_first(data, _OUTPUTS_KEYS) or []):
        item = _lower_keys(entry)
        raw_format = str(_first(item, _FORMAT_KEYS) or "").lower()
        try:
            output_format = OutputFormat(raw_format)
        except ValueError as exc:
            raise typer.BadParameter(
                f"Output request {index} has an unsupported output type: {raw_format or 'missing'}"
            ) from exc
        outputs.append(
            OutputRequest(
                destination_path=str(_first(item, _DESTINATION_KEYS) or ""),
                output_format=output_format,
                file_name=item.get("file_name") or item.get("filename"),
            )
        )
    return ProcessRequest(input_path=input_path, outputs=tuple(outputs))
