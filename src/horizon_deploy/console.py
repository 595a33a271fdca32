"""Rich rendering for CLI output."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from horizon_deploy.changes import UpdateStrategy, assess_live_update
from horizon_deploy.types import ContainerState, LayerStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from horizon_deploy.changes import ConfigChange
    from horizon_deploy.layers import LayerResolution
    from horizon_deploy.types import ExecutionResult, LayerInfo, SystemStatus, ValidationResult


_STATUS_STYLES = {
    LayerStatus.DEPLOYED: "green",
    LayerStatus.RUNNING: "green",
    LayerStatus.HEALTHY: "green",
    LayerStatus.SKIPPED: "dim",
    LayerStatus.HEALTH_CHECK_FAILED: "yellow",
    LayerStatus.FAILED: "red",
}

_STRATEGY_STYLES = {
    UpdateStrategy.LIVE: "green",
    UpdateStrategy.SERVICE_RELOAD: "yellow",
    UpdateStrategy.REBOOT_REQUIRED: "red",
}

_STATE_STYLES = {
    ContainerState.RUNNING: "green",
    ContainerState.CREATED: "cyan",
    ContainerState.STOPPED: "yellow",
    ContainerState.PAUSED: "yellow",
    ContainerState.MISSING: "red",
    ContainerState.UNKNOWN: "dim",
}


class DeployConsole:
    """Text output for horizonos-deploy (non-interactive apart from confirm)."""

    def __init__(self, console: Console | None = None) -> None:
        """Initialize the console.

        Args:
            console: Rich console to write to (defaults to stdout).
        """
        self.console = console or Console()

    def confirm(self, message: str, default: bool = False) -> bool:
        return Confirm.ask(message, default=default, console=self.console)

    def show_success(self, message: str) -> None:
        """Show success message."""
        self.console.print(f"[green]✓[/green] {message}")

    def show_error(self, message: str) -> None:
        """Show error message."""
        self.console.print(f"[red]✗[/red] {message}")

    def show_warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def show_info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def show_errors(self, title: str, messages: list[str]) -> None:
        """Show an error list in a red panel, one message per line."""
        body = "\n".join(f"• {m}" for m in messages)
        self.console.print(Panel(body, title=title, border_style="red"))

    def show_validation(self, result: ValidationResult) -> None:
        if result.is_valid:
            self.show_success("Configuration is valid")
            return
        self.show_errors(
            f"Configuration invalid ({len(result.errors)} errors)",
            [e.message for e in result.errors],
        )

    def show_plan(self, resolution: LayerResolution) -> None:
        """Display the resolved layer order, or every resolution issue."""
        if not resolution.ok:
            self.show_errors("Layer resolution failed", [i.message for i in resolution.issues])
            return
        if not resolution.order:
            self.console.print("[yellow]No system layers declared[/yellow]")
            return

        table = Table(title="Layer Order")
        table.add_column("#", justify="right")
        table.add_column("Layer", style="cyan")
        table.add_column("Purpose")
        table.add_column("Priority", justify="right")
        table.add_column("Depends On")
        table.add_column("Image")

        for position, layer in enumerate(resolution.order, 1):
            name = layer.name if layer.enabled else f"{layer.name} [dim](disabled)[/dim]"
            table.add_row(
                str(position),
                name,
                layer.purpose.value,
                str(layer.priority),
                ", ".join(layer.dependencies) or "-",
                layer.container.image_ref,
            )
        self.console.print(table)

    def show_result(self, result: ExecutionResult, dry_run: bool = False) -> None:
        """Display the operation audit trail, layer statuses and outcome."""
        if result.operations:
            table = Table(title="Operations (dry run)" if dry_run else "Operations")
            table.add_column("#", justify="right")
            table.add_column("Kind", style="cyan")
            table.add_column("Description")
            for position, op in enumerate(result.operations, 1):
                table.add_row(str(position), op.kind.value, op.description)
            self.console.print(table)

        if result.layer_status:
            layers = Table(title="Layers")
            layers.add_column("Layer", style="cyan")
            layers.add_column("Status")
            for name, status in result.layer_status.items():
                style = _STATUS_STYLES[status]
                layers.add_row(name, f"[{style}]{status.value}[/{style}]")
            self.console.print(layers)

        if result.success:
            if dry_run:
                self.show_success("Dry run complete, no changes made")
            else:
                self.show_success(f"Deployed commit {result.commit_id}")
            for name, status in result.layer_status.items():
                if status is LayerStatus.HEALTH_CHECK_FAILED:
                    self.show_warning(f"Layer '{name}' failed its health check")
        else:
            self.show_errors("Deployment failed", result.messages)

    def show_status(self, status: SystemStatus) -> None:
        table = Table(title="System Status", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Current commit", status.current_commit or "unknown")
        table.add_row("Kernel", status.kernel_version)
        table.add_row("Uptime", status.uptime)
        table.add_row("Available commits", "\n".join(status.available_commits) or "-")
        if status.pending_changes is not None:
            if status.in_sync:
                sync = "[green]in sync[/green]"
            else:
                sync = f"[yellow]{len(status.pending_changes)} pending changes[/yellow]"
            table.add_row("Configuration", sync)
        self.console.print(table)

    def show_changes(self, changes: Sequence[ConfigChange]) -> None:
        """Display pending configuration changes and how they can be applied."""
        if not changes:
            self.show_success("No changes from the applied configuration")
            return

        table = Table(title="Pending Changes")
        table.add_column("Change", style="cyan")
        table.add_column("Strategy")
        table.add_column("Impact")
        for change in changes:
            style = _STRATEGY_STYLES[change.strategy]
            table.add_row(change.description, f"[{style}]{change.strategy.value}[/{style}]", change.impact.value)
        self.console.print(table)

        capability = assess_live_update(changes)
        if capability.can_fully_update:
            self.show_info(f"Live update possible ({len(changes)} changes, ~{capability.estimated_seconds}s)")
        else:
            self.show_warning(f"Reboot required for {capability.reboot_changes} change(s)")

    def show_layers(self, infos: Sequence[LayerInfo]) -> None:
        if not infos:
            self.show_info("No system layers deployed")
            return

        running = sum(info.state is ContainerState.RUNNING for info in infos)
        table = Table(title="System Layers", caption=f"{len(infos)} layers, {running} running")
        table.add_column("Layer", style="cyan")
        table.add_column("Purpose")
        table.add_column("Runtime")
        table.add_column("State")
        for info in infos:
            layer = info.layer
            name = layer.name if layer.enabled else f"{layer.name} [dim](disabled)[/dim]"
            style = _STATE_STYLES[info.state]
            table.add_row(
                name,
                layer.purpose.value,
                layer.container.runtime.value,
                f"[{style}]{info.state.value}[/{style}]",
            )
        self.console.print(table)
