from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Sequence

from models.errors import InvalidRequestError
from models.records import OutputRequest, ProcessRequest


class RequestValidator:
    """Upfront checks so the fan-out never has to re-validate paths."""

    def validate(self, request: ProcessRequest) -> None:
        self._validate_input_path(request.input_path)
        self._validate_outputs(request.outputs)

    @staticmethod
    def _validate_input_path(input_path: str) -> None:
        if not input_path or not input_path.strip():
            raise InvalidRequestError("JSON file path cannot be empty.")
        if not Path(input_path).is_file():
            raise InvalidRequestError(f"JSON file not found at path: {input_path}")

    def _validate_outputs(self, outputs: Sequence[OutputRequest]) -> None:
        if not outputs:
            raise InvalidRequestError("Output requests cannot be empty.")

        duplicates = [
            request
            for request, count in Counter(
                (output.destination_path, output.output_format) for output in outputs
            ).items()
            if count > 1
        ]
        if duplicates:
            path, output_format = duplicates[0]
            raise InvalidRequestError(
                f"Duplicate output request found: destination_path={path!r}, "
                f"output_format={output_format.value!r}"
            )

        for index, output in enumerate(outputs):
            self._validate_destination(output.destination_path, index)

    @staticmethod
    def _validate_destination(destination: str, index: int) -> None:
        if not destination or not destination.strip():
            raise InvalidRequestError(f"Output path at index {index} cannot be empty.")
        path = Path(destination)
        if path.is_file():
            raise InvalidRequestError(
                f"Output path at index {index} should be a directory, not a file: {destination}"
            )
        if not path.is_dir():
            raise InvalidRequestError(f"Output directory at index {index} not found: {destination}")
