"""Command-line interface for shipwright."""

from __future__ import annotations

from shipwright.cli.main import cli, main

__all__ = ["cli", "main"]
