"""Output file naming and best-effort cleanup shared by every sink."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from models.records import OutputFormat

logger = logging.getLogger(__name__)

FILE_PREFIX = "sensor_data"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Process-wide UTC clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant; handy for deterministic file names."""

    def __init__(self, instant: datetime) -> None:
        self.instant = instant

    def now(self) -> datetime:
        return self.instant


class OutputNamer:
    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()

    def generate_file_name(self, output_format: OutputFormat) -> str:
        timestamp = self.clock.now().strftime(TIMESTAMP_FORMAT)
        return f"{FILE_PREFIX}_{timestamp}{output_format.extension}"

    def build_path(
        self,
        directory: str,
        output_format: OutputFormat,
        file_name: Optional[str] = None,
    ) -> Path:
        if file_name:
            name = Path(file_name).name
            if not name.lower().endswith(output_format.extension):
                name = f"{name}{output_format.extension}"
        else:
            name = self.generate_file_name(output_format)
        return Path(directory) / name

    @staticmethod
    def try_delete(path: Path) -> bool:
        """Remove ``path`` if present. Returns False only when removal failed."""
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(
                "Could not remove partial output file",
                extra={"file_path": str(path), "reason": str(exc)},
            )
            return False
        return True
