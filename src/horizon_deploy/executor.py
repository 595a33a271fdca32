"""Command executor: the single process boundary.

All external binaries (ostree, pacman, systemctl, useradd, container
runtimes, flatpak...) are invoked through `CommandExecutor.run`. In dry-run
mode nothing is spawned; the command is logged and recorded, and an empty
successful capture is returned.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field

from horizon_deploy.errors import CommandError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one command."""

    args: tuple[str, ...]
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def format_command(args: Sequence[str]) -> str:
    """Render an argument list as a copy-pasteable shell line."""
    return shlex.join(args)


@dataclass
class CommandExecutor:
    """Production command runner.

    Satisfies the CommandRunner protocol structurally.

    Attributes:
        dry_run: Record commands instead of running them.
        history: Every command requested, in order, in both modes.
    """

    dry_run: bool = False
    history: list[tuple[str, ...]] = field(default_factory=list)

    @classmethod
    def create(cls, dry_run: bool = False) -> CommandExecutor:
        return cls(dry_run=dry_run)

    def run(
        self,
        args: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command, or record it in dry-run mode.

        Args:
            args: Program and arguments.
            input: Text for stdin.
            timeout: Seconds before the process is killed.
            check: Raise CommandError on non-zero exit.

        Returns:
            CommandResult. Always empty and successful in dry-run mode.

        Raises:
            CommandError: On failure (with `check`), timeout, or spawn error.
        """
        argv = tuple(str(a) for a in args)
        self.history.append(argv)
        line = format_command(argv)

        if self.dry_run:
            logger.info("DRY RUN: %s", line)
            return CommandResult(argv)

        logger.debug("Running: %s", line)
        try:
            proc = subprocess.run(
                list(argv),
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(list(argv), None, timed_out=True) from e
        except OSError as e:
            raise CommandError(list(argv), None, str(e)) from e

        result = CommandResult(argv, proc.returncode, proc.stdout, proc.stderr)
        if not result.ok:
            logger.debug("Command exited %d: %s", result.exit_code, line)
            if check:
                raise CommandError(list(argv), result.exit_code, result.stderr)
        return result
