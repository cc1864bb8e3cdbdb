"""Command registry for the opd-tokens CLI."""

import click


def register_all_commands(cli: click.Group) -> None:
    """Register all commands with the CLI group.

    Imported lazily to keep the CLI module import cheap.
    """
    from opd_tokens.cli.commands.categories import categories_cmd
    from opd_tokens.cli.commands.scenario import run_cmd, simulate_cmd

    cli.add_command(categories_cmd)
    cli.add_command(simulate_cmd)
    cli.add_command(run_cmd)
