"""Builds production collaborators from ``RollwrightConfig``.

Shared by the commands that talk to real registries, terraform and hosts.
"""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from rollwright.bridge.health import HttpHealthProbe
from rollwright.bridge.provisioning import TerraformEngine
from rollwright.bridge.registry import HttpRegistryClient
from rollwright.bridge.remote import SshExecutor
from rollwright.config import RollwrightConfig
from rollwright.core.errors import RemoteExecutionError
from rollwright.core.orchestrator import DeploymentOrchestrator
from rollwright.models.inventory import Inventory
from rollwright.models.targets import DeploymentTarget


def configure_logging(level: str) -> None:
    """Route stdlib logging through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
            )
        ],
        force=True,
    )


def ssh_executor_factory(settings: RollwrightConfig):
    """An executor factory that reaches each target over ssh."""

    def factory(target: DeploymentTarget) -> SshExecutor:
        if not target.endpoint:
            raise RemoteExecutionError(
                f"target {target.target_id} has no endpoint; converge it first"
            )
        return SshExecutor(
            target.endpoint,
            user=settings.ssh_user,
            identity_file=target.credentials_ref,
            port=settings.ssh_port,
            connect_timeout=settings.ssh_connect_timeout,
        )

    return factory


def build_orchestrator(
    settings: RollwrightConfig,
    *,
    inventory_path: Path | None = None,
    state_db: Path | None = None,
) -> DeploymentOrchestrator:
    """Wire a DeploymentOrchestrator against real infrastructure.

    Raises ``OSError`` or ``pydantic.ValidationError`` if the inventory
    cannot be loaded.
    """
    overrides = {}
    if state_db is not None:
        overrides["state_db_path"] = state_db
    config = settings.to_deploy_config().model_copy(update=overrides)
    inventory = Inventory.load(inventory_path or settings.inventory_path)
    return DeploymentOrchestrator(
        config,
        inventory,
        registry_client=HttpRegistryClient(insecure=settings.registry_insecure),
        engine=TerraformEngine(
            settings.terraform_module_dir,
            settings.terraform_work_dir,
            binary=settings.terraform_binary,
        ),
        probe=HttpHealthProbe(),
        executor_factory=ssh_executor_factory(settings),
    )
