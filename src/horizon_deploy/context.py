"""Application context for dependency injection.

Separates object creation from object use so CLI commands can be driven
with test doubles.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from horizon_deploy.settings import EngineSettings, load_settings

if TYPE_CHECKING:
    from horizon_deploy.engine import ExecutionEngine
    from horizon_deploy.protocols import CommandRunner, FileSystem


@dataclass
class AppContext:
    """Container for the dependencies used by CLI commands.

    Tests construct AppContext directly with an engine wired to fakes.
    """

    settings: EngineSettings
    engine: ExecutionEngine


def create_context(
    settings_path: Path | None = None,
    dry_run: bool | None = None,
    runner: CommandRunner | None = None,
    filesystem: FileSystem | None = None,
) -> AppContext:
    """Factory for application dependencies.

    Args:
        settings_path: Settings file (defaults to the system-wide one).
        dry_run: Override the dry-run setting.
        runner: Override command runner (for testing).
        filesystem: Override filesystem (for testing).

    Returns:
        Configured AppContext.

    Raises:
        ConfigLoadError: If the settings cannot be loaded.
    """
    from horizon_deploy.engine import ExecutionEngine

    settings = load_settings(settings_path, dry_run=dry_run)
    engine = ExecutionEngine.create(settings, runner=runner, filesystem=filesystem)
    return AppContext(settings=settings, engine=engine)
