"""Runtime configuration: env-driven, built once per CLI invocation.

Centralized config using pydantic-settings for environment variable
support.  Reads from a .env file and ROLLWRIGHT_* environment variables,
then hands the core an explicit ``DeployConfig``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from rollwright.models.config import (
    DeployConfig,
    HealthCheckPolicy,
    LockMode,
    RetryPolicy,
    Timeouts,
)


class RollwrightConfig(BaseSettings):
    """Operator configuration with environment variable overrides.

    All settings can be overridden via ROLLWRIGHT_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export ROLLWRIGHT_LOG_LEVEL=DEBUG
        export ROLLWRIGHT_STATE_DB_PATH=/var/lib/rollwright/state.db

    Or via .env file::

        ROLLWRIGHT_TERRAFORM_MODULE_DIR=infra/target
        ROLLWRIGHT_SSH_USER=deploy
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ROLLWRIGHT_",
        env_file_encoding="utf-8",
    )

    # Logging
    log_level: str = "INFO"

    # Storage paths
    state_db_path: Path = Path(".rollwright/state.db")
    inventory_path: Path = Path("inventory.json")

    # Container registry
    registry_timeout: float = 10.0
    registry_max_attempts: int = 3
    registry_initial_delay: float = 0.5
    registry_insecure: bool = False

    # Provisioning
    provision_timeout: float = 900.0
    terraform_binary: str = "terraform"
    terraform_module_dir: Path = Path("infra")
    terraform_work_dir: Path = Path(".rollwright/terraform")
    convergence_lock_mode: LockMode = LockMode.FAIL_FAST
    lock_wait_timeout: float = 30.0
    refresh_timeout: float = 120.0
    target_lease_ttl: float = 60.0

    # Remote execution
    ssh_user: str = "root"
    ssh_port: int = 22
    ssh_connect_timeout: int = 10
    remote_exec_timeout: float = 60.0
    pull_timeout: float = 300.0
    stop_grace_period: float = 20.0

    # Health checking
    health_probe_timeout: float = 5.0
    health_max_attempts: int = 6
    health_initial_delay: float = 1.0
    health_max_delay: float = 15.0

    # Fan-out
    max_parallel_targets: int = 4

    def to_deploy_config(self) -> DeployConfig:
        """The explicit configuration object handed to the core."""
        return DeployConfig(
            state_db_path=self.state_db_path,
            timeouts=Timeouts(
                registry=self.registry_timeout,
                provision=self.provision_timeout,
                refresh=self.refresh_timeout,
                remote_exec=self.remote_exec_timeout,
                pull=self.pull_timeout,
                stop_grace=self.stop_grace_period,
                lock_wait=self.lock_wait_timeout,
            ),
            registry_retry=RetryPolicy(
                max_attempts=self.registry_max_attempts,
                initial_delay=self.registry_initial_delay,
            ),
            health=HealthCheckPolicy(
                probe_timeout=self.health_probe_timeout,
                retry=RetryPolicy(
                    max_attempts=self.health_max_attempts,
                    initial_delay=self.health_initial_delay,
                    max_delay=self.health_max_delay,
                ),
            ),
            convergence_lock_mode=self.convergence_lock_mode,
            max_parallel_targets=self.max_parallel_targets,
            lease_ttl=self.target_lease_ttl,
        )
