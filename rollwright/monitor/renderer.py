"""Rich terminal rendering for deployment results, targets and history.

Color scheme
------------
- green     : HEALTHY / SUCCESS
- yellow    : CONVERGING / ROLLED_BACK
- magenta   : DEGRADED
- bold red  : FAILED
- dim       : UNKNOWN / not attempted
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from rollwright.models.deployment import DeploymentOutcome, DeploymentResult
from rollwright.models.infra import DriftReport
from rollwright.models.rollout import RolloutOutcome, RolloutRecord
from rollwright.models.targets import DeploymentTarget, TargetStatus

# ---------------------------------------------------------------------------
# Status -> Rich markup mapping
# ---------------------------------------------------------------------------

_STATUS_LABELS: dict[TargetStatus, str] = {
    TargetStatus.HEALTHY: "[green]HEALTHY[/green]",
    TargetStatus.CONVERGING: "[yellow]CONVERGING[/yellow]",
    TargetStatus.DEGRADED: "[magenta]DEGRADED[/magenta]",
    TargetStatus.FAILED: "[bold red]FAILED[/bold red]",
    TargetStatus.UNKNOWN: "[dim]UNKNOWN[/dim]",
}

_OUTCOME_LABELS: dict[RolloutOutcome, str] = {
    RolloutOutcome.SUCCESS: "[green]success[/green]",
    RolloutOutcome.ROLLED_BACK: "[yellow]rolled back[/yellow]",
    RolloutOutcome.FAILED: "[bold red]failed[/bold red]",
}

_OVERALL_STYLES: dict[DeploymentOutcome, str] = {
    DeploymentOutcome.SUCCESS: "green",
    DeploymentOutcome.PARTIAL: "yellow",
    DeploymentOutcome.FAILED: "red",
}


def _short_digest(digest: str | None) -> str:
    if not digest:
        return "-"
    return digest.split(":", 1)[-1][:12]


class DeploymentRenderer:
    """Renders Rollwright models as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Deployment result
    # ------------------------------------------------------------------

    def render_result(self, result: DeploymentResult) -> Panel:
        """Per-target outcome table with a one-line summary footer."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Target", style="cyan", min_width=12)
        table.add_column("Status", justify="center", min_width=12)
        table.add_column("Rollout", justify="center", min_width=12)
        table.add_column("Error", style="red")
        table.add_column("Detail")

        for outcome in result.outcomes:
            if not outcome.attempted:
                rollout = "[dim]not attempted[/dim]"
            elif outcome.rollout_outcome is None:
                rollout = "[dim]-[/dim]"
            else:
                rollout = _OUTCOME_LABELS[outcome.rollout_outcome]
            table.add_row(
                outcome.target_id,
                _STATUS_LABELS.get(outcome.status, outcome.status.value),
                rollout,
                outcome.error_code or "",
                Text(outcome.detail or ""),
            )

        overall = result.overall
        style = _OVERALL_STYLES[overall]
        artifact = result.artifact.pull_reference if result.artifact else "[red]unresolved[/red]"
        summary_parts = [
            f"[bold]Deployment:[/bold] {result.deployment_id}",
            f"[bold]Artifact:[/bold] {artifact}",
            f"[bold]Policy:[/bold] {result.policy.value}",
            f"[bold]Result:[/bold] [{style}]{overall.value}[/{style}]",
        ]
        if result.error_code:
            summary_parts.append(f"[bold red]{result.error_code}:[/bold red] {result.detail}")
        summary = "  |  ".join(summary_parts)

        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title="[bold]Rollwright Deployment[/bold]",
            border_style=style,
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Registry listing
    # ------------------------------------------------------------------

    def render_targets(self, targets: Sequence[DeploymentTarget]) -> Table:
        table = Table(title="Deployment Targets", header_style="bold cyan")
        table.add_column("Target", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Endpoint")
        table.add_column("Artifact")
        table.add_column("Digest", style="dim")
        table.add_column("Updated", style="dim")

        for target in targets:
            artifact = target.current_artifact
            table.add_row(
                target.target_id,
                _STATUS_LABELS.get(target.status, target.status.value),
                target.endpoint or "-",
                artifact.name + (f":{artifact.tag}" if artifact.tag else "") if artifact else "-",
                _short_digest(artifact.digest) if artifact else "-",
                target.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        return table

    # ------------------------------------------------------------------
    # Rollout history
    # ------------------------------------------------------------------

    def render_history(
        self,
        target_id: str,
        records: Sequence[RolloutRecord],
        chain_valid: bool | None = None,
    ) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", justify="right", width=4)
        table.add_column("Started", style="dim")
        table.add_column("Artifact")
        table.add_column("Previous", style="dim")
        table.add_column("Outcome", justify="center")
        table.add_column("Error", style="red")
        table.add_column("Transitions", style="dim")

        for i, record in enumerate(records, start=1):
            previous = record.previous_artifact
            table.add_row(
                str(i),
                record.started_at.strftime("%Y-%m-%d %H:%M:%S"),
                f"{record.artifact.name}@{_short_digest(record.artifact.digest)}",
                _short_digest(previous.digest) if previous else "-",
                _OUTCOME_LABELS[record.outcome],
                record.error_code or "",
                " ".join(t.split("->")[1] for t in record.transitions),
            )

        parts = [f"[bold]Records:[/bold] {len(records)}"]
        if chain_valid is not None:
            chain = "[green]valid[/green]" if chain_valid else "[bold red]BROKEN[/bold red]"
            parts.append(f"[bold]Chain:[/bold] {chain}")
        return Panel(
            Group(table, Text(""), Text.from_markup("  |  ".join(parts))),
            title=f"[bold]Rollout history: {target_id}[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Drift
    # ------------------------------------------------------------------

    def render_drift(self, reports: Sequence[DriftReport]) -> Table:
        table = Table(title="Infrastructure Drift", header_style="bold cyan")
        table.add_column("Target", style="cyan")
        table.add_column("Drift", justify="center")
        table.add_column("Instance")
        table.add_column("Endpoint")
        table.add_column("Reasons")

        for report in reports:
            live = report.live
            table.add_row(
                report.target_id,
                "[bold red]DRIFTED[/bold red]" if report.drifted else "[green]in sync[/green]",
                (live.instance_id if live else "") or "-",
                (live.public_endpoint if live else "") or "-",
                Text("\n".join(report.reasons)),
            )
        return table

    # ------------------------------------------------------------------
    # Convenience printers
    # ------------------------------------------------------------------

    def print_result(self, result: DeploymentResult) -> None:
        self.console.print(self.render_result(result))

    def print_targets(self, targets: Sequence[DeploymentTarget]) -> None:
        if not targets:
            self.console.print("[dim]No targets registered.[/dim]")
            return
        self.console.print(self.render_targets(targets))
