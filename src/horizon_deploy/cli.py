"""CLI commands using Typer."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from horizon_deploy import __version__
from horizon_deploy.console import DeployConsole
from horizon_deploy.context import create_context
from horizon_deploy.errors import ConfigLoadError, DeployError
from horizon_deploy.layers import plan_layers
from horizon_deploy.loader import load_config
from horizon_deploy.validation import validate

if TYPE_CHECKING:
    from horizon_deploy.changes import ConfigChange
    from horizon_deploy.context import AppContext
    from horizon_deploy.models import CompiledConfig

app = typer.Typer(
    name="horizonos-deploy",
    help="Validate, plan and atomically deploy HorizonOS configurations",
    no_args_is_help=True,
)

console = Console()
out = DeployConsole(console)

ConfigFile = Annotated[Path, typer.Argument(help="Compiled configuration (JSON or YAML)")]
SettingsOption = Annotated[
    Path | None, typer.Option("--settings", "-s", help="Engine settings file (YAML)")
]


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"horizonos-deploy v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """Validate, plan and atomically deploy HorizonOS configurations."""
    pass


def configure_logging(level: str) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load(file: Path) -> CompiledConfig:
    try:
        return load_config(file)
    except ConfigLoadError as e:
        out.show_error(str(e))
        raise typer.Exit(1) from e


def _get_context(settings: Path | None, dry_run: bool | None = None) -> AppContext:
    try:
        return create_context(settings_path=settings, dry_run=dry_run)
    except ConfigLoadError as e:
        out.show_error(str(e))
        raise typer.Exit(1) from e


def _pending_changes(ctx: AppContext, config: CompiledConfig) -> list[ConfigChange] | None:
    try:
        return ctx.engine.pending_changes(config)
    except ValueError as e:
        out.show_error(f"Cannot read the applied configuration: {e}")
        raise typer.Exit(1) from e


@contextmanager
def _stop_on_sigterm() -> Iterator[threading.Event]:
    """Yield an event set on SIGTERM so a deployment stops at the next stage."""
    stop = threading.Event()
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())
    try:
        yield stop
    finally:
        signal.signal(signal.SIGTERM, previous)


# ============================================================================
# Commands
# ============================================================================


@app.command("validate")
def validate_command(file: ConfigFile) -> None:
    """Check a configuration and report every problem."""
    result = validate(_load(file))
    out.show_validation(result)
    if result.is_invalid:
        raise typer.Exit(1)


@app.command("plan")
def plan_command(
    file: ConfigFile,
    settings: SettingsOption = None,
    _context=None,
) -> None:
    """Show the layer order and what changed since the last applied configuration."""
    config = _load(file)
    validation = validate(config)
    if validation.is_invalid:
        out.show_validation(validation)
        raise typer.Exit(1)

    resolution = plan_layers(config.layers)
    out.show_plan(resolution)
    if not resolution.ok:
        raise typer.Exit(1)

    ctx = _context or _get_context(settings)
    changes = _pending_changes(ctx, config)
    if changes is None:
        out.show_info("No configuration applied yet, nothing to compare")
    else:
        out.show_changes(changes)


@app.command("apply")
def apply_command(
    file: ConfigFile,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-n", help="Preview operations without changing the system")
    ] = False,
    settings: SettingsOption = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log every command")] = False,
    _context=None,
) -> None:
    """Deploy a configuration, rolling back the base tree on failure."""
    config = _load(file)
    ctx = _context or _get_context(settings, dry_run=dry_run or None)
    configure_logging("DEBUG" if verbose else ctx.settings.log_level)

    with _stop_on_sigterm() as stop:
        result = ctx.engine.execute(config, cancel_check=stop.is_set)
    out.show_result(result, dry_run=ctx.settings.dry_run)
    if not result.success:
        raise typer.Exit(1)


@app.command("rollback")
def rollback_command(
    commit: Annotated[str, typer.Argument(help="Commit to re-deploy")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
    settings: SettingsOption = None,
    _context=None,
) -> None:
    """Re-deploy an earlier commit."""
    ctx = _context or _get_context(settings)
    configure_logging(ctx.settings.log_level)

    if not yes and not out.confirm(f"Roll back to {commit}?"):
        out.show_warning("Rollback cancelled")
        raise typer.Exit(1)

    result = ctx.engine.rollback(commit)
    if result.success:
        out.show_success(f"Rolled back to {commit}")
    else:
        out.show_errors("Rollback failed", result.messages)
        raise typer.Exit(1)


@app.command("status")
def status_command(
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Configuration to compare with the applied one"),
    ] = None,
    settings: SettingsOption = None,
    _context=None,
) -> None:
    """Show the booted commit, available commits and host info."""
    config = _load(config_file) if config_file else None
    ctx = _context or _get_context(settings)
    configure_logging(ctx.settings.log_level)

    try:
        status = ctx.engine.status(config)
    except (DeployError, ValueError) as e:
        out.show_error(str(e))
        raise typer.Exit(1) from e
    out.show_status(status)
    if config is not None and status.pending_changes is None:
        out.show_info("No configuration applied yet")
    elif status.pending_changes:
        out.show_changes(status.pending_changes)


# ============================================================================
# Layer commands
# ============================================================================

layer_app = typer.Typer(help="Manage deployed system layers")
app.add_typer(layer_app, name="layer")

LayerName = Annotated[str, typer.Argument(help="Layer name")]


@layer_app.command("list")
def layer_list_command(
    settings: SettingsOption = None,
    _context=None,
) -> None:
    """List deployed system layers and their container states."""
    ctx = _context or _get_context(settings)
    configure_logging(ctx.settings.log_level)
    try:
        infos = ctx.engine.list_layers()
    except ValueError as e:
        out.show_error(f"Cannot read the applied configuration: {e}")
        raise typer.Exit(1) from e
    out.show_layers(infos)


def _run_layer_action(action: Callable[[str], None], name: str, done: str) -> None:
    try:
        action(name)
    except (DeployError, ValueError) as e:
        out.show_error(str(e))
        raise typer.Exit(1) from e
    out.show_success(f"{done} layer '{name}'")


@layer_app.command("start")
def layer_start_command(
    name: LayerName,
    settings: SettingsOption = None,
    _context=None,
) -> None:
    """Start a layer's container."""
    ctx = _context or _get_context(settings)
    configure_logging(ctx.settings.log_level)
    _run_layer_action(ctx.engine.start_layer, name, "Started")


@layer_app.command("stop")
def layer_stop_command(
    name: LayerName,
    settings: SettingsOption = None,
    _context=None,
) -> None:
    """Stop a layer's container."""
    ctx = _context or _get_context(settings)
    configure_logging(ctx.settings.log_level)
    _run_layer_action(ctx.engine.stop_layer, name, "Stopped")


@layer_app.command("remove")
def layer_remove_command(
    name: LayerName,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
    settings: SettingsOption = None,
    _context=None,
) -> None:
    """Remove a layer's container and its exported binaries."""
    ctx = _context or _get_context(settings)
    configure_logging(ctx.settings.log_level)

    if not yes and not out.confirm(f"Remove layer '{name}'?"):
        out.show_warning("Removal cancelled")
        raise typer.Exit(1)
    _run_layer_action(ctx.engine.remove_layer, name, "Removed")


if __name__ == "__main__":
    app()
