from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_BATCH_SIZE_ENV = "SENSOR_BATCH_SIZE"
_CONCURRENCY_MODE_ENV = "SENSOR_CONCURRENCY_MODE"
_WORKER_TIMEOUT_ENV = "SENSOR_WORKER_TIMEOUT"
_DISPOSE_TIMEOUT_ENV = "SENSOR_DISPOSE_TIMEOUT"
_READ_BUFFER_ENV = "SENSOR_READ_BUFFER_SIZE"
_WRITE_BUFFER_ENV = "SENSOR_WRITE_BUFFER_SIZE"
_RUN_STORE_PATH_ENV = "SENSOR_RUN_STORE_PATH"
_RUNNER_WORKERS_ENV = "SENSOR_RUNNER_WORKERS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_CONCURRENCY_MODES = ("task", "thread")


@dataclass(frozen=True)
class Settings:
    batch_size: int
    concurrency_mode: str
    worker_timeout: float
    dispose_timeout: float
    read_buffer_size: int
    write_buffer_size: int
    run_store_path: Optional[str]
    runner_workers: int
    log_level: str


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
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


def _read_concurrency_mode(default: str) -> str:
    value = os.getenv(_CONCURRENCY_MODE_ENV)
    if value is None:
        return default
    candidate = value.strip().lower()
    return candidate if candidate in _CONCURRENCY_MODES else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        batch_size=_read_positive_int(_BATCH_SIZE_ENV, 500),
        concurrency_mode=_read_concurrency_mode("task"),
        worker_timeout=_read_positive_float(_WORKER_TIMEOUT_ENV, 10.0),
        dispose_timeout=_read_positive_float(_DISPOSE_TIMEOUT_ENV, 5.0),
        read_buffer_size=_read_positive_int(_READ_BUFFER_ENV, 32768),
        write_buffer_size=_read_positive_int(_WRITE_BUFFER_ENV, 65536),
        run_store_path=_read_optional_env(_RUN_STORE_PATH_ENV, "./tmp/runs.json"),
        runner_workers=_read_positive_int(_RUNNER_WORKERS_ENV, 2),
        log_level=_read_log_level("INFO"),
    )
