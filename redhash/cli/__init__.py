"""Command line interface for redhash."""

from redhash.cli.main import cli

__all__ = ["cli"]
