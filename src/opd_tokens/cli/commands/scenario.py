"""Scenario replay commands."""

from typing import Any, Dict, Optional

import click

from opd_tokens.cli.output import emit_allocation_error, emit_success
from opd_tokens.core.coordinator import AllocationCoordinator
from opd_tokens.core.errors import AllocationError
from opd_tokens.core.scenario import BUILTIN_SCENARIO, load_scenario, run_scenario
from opd_tokens.core.stores import InMemoryResourceStore, InMemoryTokenStore


def _replay(ctx: click.Context, scenario: Dict[str, Any], lock_timeout: Optional[float]) -> None:
    timeout = ctx.obj["config"].lock_timeout
    if lock_timeout is not None:
        timeout = lock_timeout if lock_timeout > 0 else None
    coordinator = AllocationCoordinator(
        InMemoryResourceStore(), InMemoryTokenStore(), default_timeout=timeout
    )
    try:
        report = run_scenario(scenario, coordinator)
    except AllocationError as exc:
        emit_allocation_error(exc)
    emit_success(report)


@click.command("simulate")
@click.option("--lock-timeout", type=float, default=None, help="Resource lock wait in seconds")
@click.pass_context
def simulate_cmd(ctx: click.Context, lock_timeout: Optional[float]) -> None:
    """Replay the built-in two-doctor booking walkthrough."""
    _replay(ctx, BUILTIN_SCENARIO, lock_timeout)


@click.command("run")
@click.argument("scenario_file", type=click.Path(dir_okay=False))
@click.option("--lock-timeout", type=float, default=None, help="Resource lock wait in seconds")
@click.pass_context
def run_cmd(ctx: click.Context, scenario_file: str, lock_timeout: Optional[float]) -> None:
    """Replay a JSON scenario file and print the resulting state."""
    try:
        scenario = load_scenario(scenario_file)
    except AllocationError as exc:
        emit_allocation_error(exc)
    _replay(ctx, scenario, lock_timeout)
