"""opd-tokens CLI entry point.

JSON-only output: success envelopes on stdout, error envelopes on stderr.
"""

from typing import Optional

import click

from opd_tokens.cli.commands import register_all_commands
from opd_tokens.config import EngineConfig, set_config
from opd_tokens.core.context import desk_context


@click.group()
@click.option(
    "--config",
    "config_file",
    envvar="OPD_TOKENS_CONFIG_FILE",
    type=click.Path(dir_okay=False),
    help="Path to an opd-tokens.toml config file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Emit engine logs to stderr at this level",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str]) -> None:
    """opd-tokens - priority admission and waitlist backfill for clinic slots.

    All commands output JSON.
    """
    config = EngineConfig.from_env(config_file)
    if log_level:
        config.log_level = log_level.upper()
        config.setup_logging()
    set_config(config)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.with_resource(desk_context("cli"))


register_all_commands(cli)


if __name__ == "__main__":
    cli()
