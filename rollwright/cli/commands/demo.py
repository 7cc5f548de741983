"""``rollwright demo``: run complete deployments against simulated infrastructure.

Provisions three simulated targets, deploys ``v1`` everywhere, then
deploys a ``v2`` that never passes its health check on one target so the
rollback path is visible.  Nothing outside this process is touched.
"""

from __future__ import annotations

import tempfile
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from rollwright.bridge.simulated import (
    SimulatedFleet,
    SimulatedProvisioningEngine,
    SimulatedRegistry,
)
from rollwright.core.orchestrator import DeploymentOrchestrator
from rollwright.models.config import DeployConfig, HealthCheckPolicy, RetryPolicy
from rollwright.models.deployment import DeploymentPolicy
from rollwright.models.infra import DesiredInfraState, InstanceSpec, NetworkSpec
from rollwright.models.inventory import Inventory, TargetSpec
from rollwright.models.targets import WorkloadSpec
from rollwright.monitor.renderer import DeploymentRenderer

console = Console()

DEMO_REPOSITORY = "docker.io/demo/web"
DEMO_TARGETS = ("web-1", "web-2", "web-3")


def demo_inventory() -> Inventory:
    return Inventory(
        targets=[
            TargetSpec(
                target_id=target_id,
                workload=WorkloadSpec(name="web", ports=["80:8080"]),
                desired=DesiredInfraState(
                    target_id=target_id,
                    instance_spec=InstanceSpec(
                        region="sim-1", size="small", image="sim-ubuntu-24.04"
                    ),
                    network_spec=NetworkSpec(ports=[22, 80]),
                ),
            )
            for target_id in DEMO_TARGETS
        ]
    )


def build_demo_orchestrator(
    state_db: Path,
) -> tuple[DeploymentOrchestrator, SimulatedRegistry, SimulatedFleet]:
    """An orchestrator whose registry, provisioning and hosts are simulated."""
    registry = SimulatedRegistry()
    fleet = SimulatedFleet()
    config = DeployConfig(
        state_db_path=state_db,
        health=HealthCheckPolicy(
            probe_timeout=1.0,
            retry=RetryPolicy(max_attempts=4, initial_delay=0.05, max_delay=0.2),
        ),
        registry_retry=RetryPolicy(max_attempts=3, initial_delay=0.05),
        max_parallel_targets=len(DEMO_TARGETS),
    )
    orchestrator = DeploymentOrchestrator(
        config,
        demo_inventory(),
        registry_client=registry,
        engine=SimulatedProvisioningEngine(),
        probe=fleet,
        executor_factory=fleet.executor_for,
    )
    return orchestrator, registry, fleet


def demo_cmd(
    delay: float = typer.Option(
        0.5,
        "--delay",
        "-d",
        help="Pause in seconds between demo steps.",
    ),
    state_db: Optional[Path] = typer.Option(
        None,
        "--state-db",
        help="Keep demo state in this database (default: a temporary directory).",
    ),
) -> None:
    """Run a complete demo deployment with simulated infrastructure."""
    with tempfile.TemporaryDirectory(prefix="rollwright-demo-") as tmp:
        db_path = state_db or Path(tmp) / "state.db"
        orchestrator, registry, fleet = build_demo_orchestrator(db_path)
        renderer = DeploymentRenderer(console=console)

        console.print()
        console.print(
            Panel(
                "[bold]Rollwright Demo[/bold]\n\n"
                f"Deploying {DEMO_REPOSITORY} to {len(DEMO_TARGETS)} simulated targets.\n"
                "Step 1 rolls out v1 everywhere; step 2 rolls out a v2 that\n"
                "fails its health check on web-2 and is rolled back there.",
                border_style="cyan",
                padding=(1, 2),
            )
        )

        registry.publish(DEMO_REPOSITORY, "v1")
        v2_digest = registry.publish(DEMO_REPOSITORY, "v2")
        fleet.host("web-2.sim.local").unhealthy_images.add(f"{DEMO_REPOSITORY}@{v2_digest}")

        console.print("\n[cyan]>>> Step 1:[/cyan] [bold]demo/web:v1[/bold], best-effort")
        time.sleep(delay)
        first = orchestrator.deploy(
            "demo/web:v1", list(DEMO_TARGETS), DeploymentPolicy.BEST_EFFORT
        )
        renderer.print_result(first)
        time.sleep(delay)

        console.print("\n[cyan]>>> Step 2:[/cyan] [bold]demo/web:v2[/bold], best-effort")
        time.sleep(delay)
        second = orchestrator.deploy(
            "demo/web:v2", list(DEMO_TARGETS), DeploymentPolicy.BEST_EFFORT
        )
        renderer.print_result(second)
        time.sleep(delay)

        renderer.print_targets(orchestrator.targets.list_all())
        chain_valid = orchestrator.ledger.verify_chain("web-2")
        console.print(
            renderer.render_history("web-2", orchestrator.ledger.history("web-2"), chain_valid)
        )

        console.print()
        console.print(
            f"[bold]Demo complete.[/bold] Step 1: {first.overall.value}, "
            f"step 2: {second.overall.value} (exit code {second.exit_code})."
        )
