from __future__ import annotations
import json
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Optional

from app.schemas import RunRecord
from settings import get_settings


class RunStore:
    """Thread-safe store of run records with optional JSON persistence."""

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self._items: Dict[str, RunRecord] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put(self, record: RunRecord) -> None:
        with self._lock:
            self._items[record.run_id] = record.model_copy(deep=True)
            self._persist()

    def get(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            record = self._items.get(run_id)
            if record is None:
                return None
            return record.model_copy(deep=True)

    def scan(self) -> list[RunRecord]:
        """Return deep copies of all stored runs, newest first."""

        with self._lock:
            records = [record.model_copy(deep=True) for record in self._items.values()]
        return sorted(records, key=lambda record: record.submitted_at, reverse=True)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            run_id: record.model_dump(mode="json") for run_id, record in self._items.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for run_id, payload in data.items():
            self._items[run_id] = RunRecord.model_validate(payload)


@lru_cache
def build_default_store(path: Optional[str] = None) -> RunStore:
    settings = get_settings()
    store_path = settings.run_store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return RunStore(persistence_path=persistence)
