"""
Command-Line Interface Layer.

This package defines the Typer application, its Rich output helpers and the
live progress display.
"""

from .app import app

__all__ = ["app"]
