"""``rollwright drift``: compare declared, recorded and live infrastructure.

Exit codes: 0 everything in sync, 1 drift found, 2 error.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from rollwright.cli.commands.deploy import split_ids
from rollwright.cli.wiring import build_orchestrator
from rollwright.config import RollwrightConfig
from rollwright.core.errors import RollwrightError
from rollwright.monitor.renderer import DeploymentRenderer

console = Console()


def drift_cmd(
    targets: Optional[str] = typer.Option(
        None, "--targets", "-t", help="Comma-separated target ids (default: whole inventory)."
    ),
    inventory: Optional[Path] = typer.Option(
        None, "--inventory", "-i", help="Inventory JSON file (default from config)."
    ),
    state_db: Optional[Path] = typer.Option(
        None, "--state-db", help="State database path (default from config)."
    ),
) -> None:
    """Report infrastructure drift for inventory targets."""
    try:
        orchestrator = build_orchestrator(
            RollwrightConfig(), inventory_path=inventory, state_db=state_db
        )
        reports = orchestrator.drift(split_ids(targets) if targets else None)
    except (OSError, ValidationError) as exc:
        console.print(f"[bold red]Cannot load inventory:[/bold red] {exc}")
        raise typer.Exit(code=2)
    except RollwrightError as exc:
        console.print(f"[bold red]{exc.code}:[/bold red] {exc}")
        raise typer.Exit(code=2)

    console.print(DeploymentRenderer(console=console).render_drift(reports))
    if any(r.drifted for r in reports):
        raise typer.Exit(code=1)
