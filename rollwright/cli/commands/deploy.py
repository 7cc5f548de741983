"""``rollwright deploy``: roll an artifact out to a set of targets.

Resolves the artifact once, converges each target's infrastructure and
rolls the workload out.  Ctrl-C cancels in-flight work cooperatively;
every interrupted rollout still leaves a complete record.

Exit codes: 0 all targets healthy, 1 some, 2 none.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from rollwright.cli.wiring import build_orchestrator
from rollwright.config import RollwrightConfig
from rollwright.core.orchestrator import DeploymentOrchestrator
from rollwright.models.deployment import (
    EXIT_TOTAL_FAILURE,
    DeploymentPolicy,
    DeploymentResult,
)
from rollwright.monitor.renderer import DeploymentRenderer

console = Console()


def split_ids(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def run_interruptible(
    orchestrator: DeploymentOrchestrator,
    artifact: str,
    target_ids: list[str],
    policy: DeploymentPolicy,
) -> DeploymentResult:
    """Run the deployment in a worker thread so Ctrl-C can cancel it."""
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="deploy") as pool:
        future = pool.submit(orchestrator.deploy, artifact, target_ids, policy)
        try:
            while not future.done():
                wait([future], timeout=0.5)
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted; cancelling in-flight work...[/yellow]")
            orchestrator.cancel("interrupted by operator")
        return future.result()


def deploy_cmd(
    artifact: str = typer.Option(
        ..., "--artifact", "-a", help="Image reference, e.g. registry.example.com/app:1.4."
    ),
    targets: str = typer.Option(
        ..., "--targets", "-t", help="Comma-separated target ids, in deployment order."
    ),
    policy: DeploymentPolicy = typer.Option(
        DeploymentPolicy.HALT_ON_FAILURE,
        "--policy",
        "-p",
        help="halt: stop at the first failure. best-effort: attempt every target.",
    ),
    inventory: Optional[Path] = typer.Option(
        None, "--inventory", "-i", help="Inventory JSON file (default from config)."
    ),
    state_db: Optional[Path] = typer.Option(
        None, "--state-db", help="State database path (default from config)."
    ),
) -> None:
    """Deploy an artifact to one or more targets."""
    target_ids = split_ids(targets)
    if not target_ids:
        console.print("[bold red]No targets given.[/bold red]")
        raise typer.Exit(code=EXIT_TOTAL_FAILURE)

    settings = RollwrightConfig()
    try:
        orchestrator = build_orchestrator(
            settings, inventory_path=inventory, state_db=state_db
        )
    except (OSError, ValidationError) as exc:
        console.print(f"[bold red]Cannot load inventory:[/bold red] {exc}")
        raise typer.Exit(code=EXIT_TOTAL_FAILURE)

    result = run_interruptible(orchestrator, artifact, target_ids, policy)
    DeploymentRenderer(console=console).print_result(result)
    raise typer.Exit(code=result.exit_code)
