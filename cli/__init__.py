"""CLI package for processing sensor files locally or through the fan-out service."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# ``cli.app`` must resolve to the module, not the Typer instance; tests patch
# ``cli.app.ApiClient`` and ``cli.app.run_pipeline`` on that path.

__all__ = []
