"""Command line interface (``nodesched``)."""

from nodesched.cli.app import app

__all__ = ["app"]
