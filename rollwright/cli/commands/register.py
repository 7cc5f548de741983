"""``rollwright register``: upsert inventory targets into the registry.

Targets already registered keep their status, endpoint and running
artifact; their credentials, health check and workload settings are
refreshed from the inventory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from rollwright.cli.wiring import build_orchestrator
from rollwright.config import RollwrightConfig
from rollwright.monitor.renderer import DeploymentRenderer

console = Console()


def register_cmd(
    inventory: Optional[Path] = typer.Option(
        None, "--inventory", "-i", help="Inventory JSON file (default from config)."
    ),
    state_db: Optional[Path] = typer.Option(
        None, "--state-db", help="State database path (default from config)."
    ),
) -> None:
    """Register every target declared in the inventory."""
    try:
        orchestrator = build_orchestrator(
            RollwrightConfig(), inventory_path=inventory, state_db=state_db
        )
    except (OSError, ValidationError) as exc:
        console.print(f"[bold red]Cannot load inventory:[/bold red] {exc}")
        raise typer.Exit(code=2)

    registered = orchestrator.register_inventory()
    console.print(f"[bold green]Registered {len(registered)} target(s).[/bold green]")
    DeploymentRenderer(console=console).print_targets(registered)
