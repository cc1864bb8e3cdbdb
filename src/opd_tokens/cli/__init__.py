"""JSON-emitting command line interface for opd-tokens."""

from opd_tokens.cli.main import cli

__all__ = ["cli"]
