"""``rollwright targets``: list registered deployment targets."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from rollwright.config import RollwrightConfig
from rollwright.core.target_registry import TargetRegistry
from rollwright.models.targets import TargetStatus
from rollwright.monitor.renderer import DeploymentRenderer

console = Console()


def targets_cmd(
    status: Optional[TargetStatus] = typer.Option(
        None, "--status", "-s", help="Only show targets with this status."
    ),
    state_db: Optional[Path] = typer.Option(
        None, "--state-db", help="State database path (default from config)."
    ),
) -> None:
    """List registered targets with their status and running artifact."""
    registry = TargetRegistry(state_db or RollwrightConfig().state_db_path)
    targets = registry.list_by_status(status) if status else registry.list_all()
    DeploymentRenderer(console=console).print_targets(targets)
