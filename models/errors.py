"""Error kinds raised by the ingestion and fan-out pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures reported by the pipeline."""


class InvalidRequestError(PipelineError, ValueError):
    """The process request failed upfront validation."""


class SinkIOError(PipelineError):
    """A sink could not open, write or finalize its destination file."""


class ReadingDecodeError(PipelineError, ValueError):
    """The reading source contains malformed JSON or an invalid record."""


class SourceNotFoundError(PipelineError, FileNotFoundError):
    """The reading source path does not exist."""


class ConfigurationError(PipelineError, LookupError):
    """A wiring defect, such as an output format without a registered sink."""


class UnexpectedPipelineError(PipelineError):
    """Any other failure raised while distributing readings."""
