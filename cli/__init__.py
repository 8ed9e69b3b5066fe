"""CLI package for driving the station sync service."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# The Typer application lives in ``cli.app``; tests patch attributes on that
# module path, so the package root does not re-export it.

__all__ = []
