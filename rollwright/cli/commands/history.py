"""``rollwright history``: show the rollout audit trail for one target."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from rollwright.config import RollwrightConfig
from rollwright.core.rollout_ledger import LedgerIntegrityError, RolloutLedger
from rollwright.monitor.renderer import DeploymentRenderer

console = Console()


def history_cmd(
    target_id: str = typer.Argument(..., help="Target whose rollouts to show."),
    verify_chain: bool = typer.Option(
        False, "--verify-chain", help="Recompute and check the record hash chain."
    ),
    state_db: Optional[Path] = typer.Option(
        None, "--state-db", help="State database path (default from config)."
    ),
) -> None:
    """Show every rollout attempt recorded for a target, oldest first."""
    ledger = RolloutLedger(state_db or RollwrightConfig().state_db_path)
    records = ledger.history(target_id)
    if not records:
        console.print(f"[dim]No rollouts recorded for {target_id}.[/dim]")
        return

    chain_valid: bool | None = None
    error = ""
    if verify_chain:
        try:
            chain_valid = ledger.verify_chain(target_id)
        except LedgerIntegrityError as exc:
            chain_valid = False
            error = str(exc)

    renderer = DeploymentRenderer(console=console)
    console.print(renderer.render_history(target_id, records, chain_valid))
    if error:
        console.print(f"[bold red]Ledger integrity error:[/bold red] {error}")
        raise typer.Exit(code=1)
