"""Priority category listing."""

import click

from opd_tokens.cli.output import emit_success
from opd_tokens.core.priority import describe_categories


@click.command("categories")
def categories_cmd() -> None:
    """List priority categories, most urgent first."""
    emit_success({"categories": describe_categories()})
