"""CLI module entry point.

Enables running the CLI via: python -m opd_tokens.cli
"""

from opd_tokens.cli.main import cli

if __name__ == "__main__":
    cli()
