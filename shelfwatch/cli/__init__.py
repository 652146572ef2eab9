"""Command-line interface."""

from shelfwatch.cli.main import cli


__all__ = ["cli"]
