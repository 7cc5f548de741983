"""Main Typer application: imports and registers all CLI commands.

Entry point: ``rollwright`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

from typing import Optional

import typer

from rollwright.cli.commands.demo import demo_cmd
from rollwright.cli.commands.deploy import deploy_cmd
from rollwright.cli.commands.drift import drift_cmd
from rollwright.cli.commands.history import history_cmd
from rollwright.cli.commands.register import register_cmd
from rollwright.cli.commands.targets import targets_cmd
from rollwright.cli.wiring import configure_logging
from rollwright.config import RollwrightConfig

app = typer.Typer(
    name="rollwright",
    help="Rollwright: converge infrastructure and roll out container images safely.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-l", help="Override ROLLWRIGHT_LOG_LEVEL (DEBUG, INFO, ...)."
    ),
) -> None:
    """Converge infrastructure and roll out container images safely."""
    configure_logging(log_level or RollwrightConfig().log_level)


# Register subcommands
app.command(name="deploy", help="Deploy an artifact to one or more targets.")(deploy_cmd)
app.command(name="targets", help="List registered targets.")(targets_cmd)
app.command(name="register", help="Register inventory targets.")(register_cmd)
app.command(name="history", help="Show rollout history for a target.")(history_cmd)
app.command(name="drift", help="Report infrastructure drift.")(drift_cmd)
app.command(name="demo", help="Run a complete demo against simulated infrastructure.")(demo_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
