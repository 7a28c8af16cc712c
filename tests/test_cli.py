from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pytest
from typer.testing import CliRunner

from cli.app import app


class StubClient:
    def __init__(self, config, run_id: str = "run-123") -> None:
        self.config = config
        self.run_id = run_id
        self.submitted: List[Dict[str, Any]] = []
        self.poll_calls: List[tuple[str, float, float]] = []
        self.result_payload: Dict[str, Any] = {
            "run_id": run_id,
            "status": "completed",
            "input_path": "/data/readings.json",
            "submitted_at": "2024-01-01T00:00:00Z",
            "finished_at": "2024-01-01T00:00:01Z",
            "processing_ms": 123,
            "accumulation": {
                "max_value_sensor_id": "S2",
                "global_average_value": 15.0,
                "total_inputs": 2,
                "active_inputs": 1,
                "zones": [{"zone": "A", "average_measurement": 15.0, "active_sensors": 1}],
            },
            "outputs": [
                {"success": True, "output_format": "csv", "file_path": "/out/a.csv", "error_message": None},
                {"success": False, "output_format": "xml", "file_path": None, "error_message": "disk full"},
            ],
            "error": None,
        }
        self.closed = False

    def submit_run(self, payload: Dict[str, Any]) -> str:
        self.submitted.append(payload)
        return self.run_id

    def poll_run(self, run_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        self.poll_calls.append((run_id, interval, timeout))
        return self.result_payload

    def get_run(self, run_id: str) -> Dict[str, Any]:
        payload = self.result_payload.copy()
        payload["run_id"] = run_id
        return payload

    def list_runs(self) -> List[Dict[str, Any]]:
        return [self.result_payload, {**self.result_payload, "run_id": "run-000", "status": "failed"}]

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def readings_file(tmp_path: Path) -> Path:
    path = tmp_path / "readings.json"
    path.write_text(
        json.dumps(
            [
                {"index": 0, "id": "S1", "value": 10, "zone": "A", "isActive": True},
                {"index": 1, "id": "S2", "value": 20, "zone": "A", "isActive": False},
            ]
        )
    )
    return path


def _install_stub(monkeypatch, stub: StubClient) -> None:
    def factory(config):
        stub.config = config
        return stub

    monkeypatch.setattr("cli.app.ApiClient", factory)


@pytest.mark.parametrize("mode", ["task", "thread"])
def test_process_writes_outputs_and_prints_statistics(
    monkeypatch, runner: CliRunner, tmp_path: Path, readings_file: Path, mode: str
) -> None:
    _install_stub(monkeypatch, StubClient(config=None))
    out = tmp_path / "out"
    out.mkdir()

    result = runner.invoke(
        app,
        ["process", "--input", str(readings_file), "--csv", str(out), "--xml", str(out), "--mode", mode],
    )

    assert result.exit_code == 0, result.output
    assert f"using {mode} workers" in result.stdout
    assert "max_value_sensor_id: S2" in result.stdout
    assert "global_average_value: 15.00" in result.stdout
    assert "A: avg=15.00, active_sensors=1" in result.stdout
    assert "CSV ok:" in result.stdout
    assert "XML ok:" in result.stdout
    assert sorted(path.suffix for path in out.iterdir()) == [".csv", ".xml"]


def test_process_reads_configuration_file(monkeypatch, runner: CliRunner, tmp_path: Path, readings_file: Path) -> None:
    _install_stub(monkeypatch, StubClient(config=None))
    out = tmp_path / "out"
    out.mkdir()
    config = tmp_path / "process-config.json"
    config.write_text(
        json.dumps(
            {
                "JsonFilePath": str(readings_file),
                "OutputRequests": [
                    {"OutputFilePath": str(out), "OutputType": "Csv"},
                    {"OutputFilePath": str(out), "OutputType": "Xml", "FileName": "export"},
                ],
            }
        )
    )

    result = runner.invoke(app, ["process", "--config", str(config), "--batch-size", "1"])

    assert result.exit_code == 0, result.output
    assert (out / "export.xml").exists()
    assert "into 2 outputs" in result.stdout


def test_process_reports_validation_failure(monkeypatch, runner: CliRunner, tmp_path: Path, readings_file: Path) -> None:
    _install_stub(monkeypatch, StubClient(config=None))

    result = runner.invoke(app, ["process", "--input", str(readings_file), "--csv", str(tmp_path / "missing")])

    assert result.exit_code == 1
    assert "Processing failed: Output directory at index 0 not found" in result.output


def test_process_requires_an_input(monkeypatch, runner: CliRunner) -> None:
    _install_stub(monkeypatch, StubClient(config=None))

    result = runner.invoke(app, ["process"])

    assert result.exit_code != 0


def test_generate_writes_dataset(runner: CliRunner, tmp_path: Path) -> None:
    target = tmp_path / "generated.json"

    result = runner.invoke(app, ["generate", "2", "3", str(target), "--seed", "5"])

    assert result.exit_code == 0, result.output
    assert "Total sensors: 6" in result.stdout
    assert "Zones: 2 (Z01, Z02)" in result.stdout
    assert len(json.loads(target.read_text())) == 6


def test_submit_without_wait(monkeypatch, runner: CliRunner, tmp_path: Path, readings_file: Path) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(
        app, ["submit", "--input", str(readings_file), "--csv", str(tmp_path), "--mode", "thread"]
    )

    assert result.exit_code == 0, result.output
    assert "Run accepted" in result.stdout
    assert stub.submitted == [
        {
            "input_path": str(readings_file.resolve()),
            "outputs": [
                {"destination_path": str(tmp_path.resolve()), "output_format": "csv", "file_name": None}
            ],
            "concurrency_mode": "thread",
        }
    ]
    assert not stub.poll_calls
    assert stub.closed is True


def test_submit_with_wait(monkeypatch, runner: CliRunner, tmp_path: Path, readings_file: Path) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(
        app,
        [
            "submit",
            "--input",
            str(readings_file),
            "--xml",
            str(tmp_path),
            "--wait",
            "--poll-interval",
            "0.1",
            "--timeout",
            "5",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Statistics" in result.stdout
    assert "XML failed: disk full" in result.stdout
    assert stub.poll_calls == [("run-123", 0.1, 5.0)]
    assert stub.closed is True


def test_result_command(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["--base-url", "http://sensors:9000/", "result", "run-999"])

    assert result.exit_code == 0
    assert "run_id: run-999" in result.stdout
    assert "Outputs" in result.stdout
    assert stub.config.base_url == "http://sensors:9000"
    assert stub.closed is True


def test_runs_command_lists_records(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["runs"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[0].startswith("run-123  completed")
    assert lines[1].startswith("run-000  failed")


def test_serve_starts_uvicorn(monkeypatch, runner: CliRunner) -> None:
    calls: List[tuple] = []
    monkeypatch.setattr("uvicorn.run", lambda target, **kwargs: calls.append((target, kwargs)))

    result = runner.invoke(app, ["serve", "--port", "9001"])

    assert result.exit_code == 0, result.output
    assert calls == [("app.main:app", {"host": "127.0.0.1", "port": 9001, "reload": False})]
