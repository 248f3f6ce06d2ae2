"""Command-line interface."""

from qpcompare.cli.main import app

__all__ = ["app"]
