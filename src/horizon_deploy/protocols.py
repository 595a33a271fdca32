"""Protocol definitions for the process and filesystem boundaries.

Every manager reaches the outside world through these two interfaces, so a
deployment can be previewed (dry-run) or driven by test doubles without
touching the host.

All concrete implementations satisfy these protocols structurally (duck typing).
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from horizon_deploy.executor import CommandResult


@runtime_checkable
class CommandRunner(Protocol):
    """Protocol for running external commands.

    Implementations either spawn a process and capture its output, or, in
    dry-run mode, record the command and return an empty capture.
    """

    dry_run: bool

    def run(
        self,
        args: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command.

        Args:
            args: Program and arguments. Never passed through a shell.
            input: Text fed to the process on stdin.
            timeout: Seconds before the process is killed; None waits forever.
            check: Raise on non-zero exit.

        Returns:
            CommandResult with exit code and captured output.

        Raises:
            CommandError: If the command fails and `check` is set, times out,
                or cannot be started.
        """
        ...


@runtime_checkable
class FileSystem(Protocol):
    """Protocol for filesystem operations.

    Abstracts filesystem access to enable testing without real I/O.
    """

    def read_text(self, path: Path) -> str:
        """Read text content from a file.

        Raises:
            FileNotFoundError: If file does not exist.
        """
        ...

    def write_text(self, path: Path, content: str) -> None:
        """Atomically replace a file's content, creating parent directories."""
        ...

    def exists(self, path: Path) -> bool:
        """Check if a path exists."""
        ...

    def mkdir(self, path: Path) -> None:
        """Create a directory and its parents; existing directories are fine."""
        ...

    def chmod(self, path: Path, mode: int) -> None:
        """Change a file's permission bits."""
        ...

    def unlink(self, path: Path) -> None:
        """Remove a file if it exists."""
        ...
