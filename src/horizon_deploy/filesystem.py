"""Filesystem implementations.

`RealFileSystem` wraps pathlib/os with atomic writes. `DryRunFileSystem`
passes reads through and turns every mutation into a log line, so a dry-run
deployment never touches the target root.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from horizon_deploy.protocols import FileSystem

logger = logging.getLogger(__name__)


class RealFileSystem:
    """Production filesystem implementation.

    Satisfies the FileSystem protocol structurally.
    """

    def read_text(self, path: Path) -> str:
        """Read text content from a file."""
        return path.read_text(encoding="utf-8")

    def write_text(self, path: Path, content: str) -> None:
        """Write via a sibling temp file and rename, so readers never see a partial file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %s", path)

    def exists(self, path: Path) -> bool:
        """Check if a path exists."""
        return path.exists()

    def mkdir(self, path: Path) -> None:
        """Create a directory."""
        path.mkdir(parents=True, exist_ok=True)

    def chmod(self, path: Path, mode: int) -> None:
        path.chmod(mode)

    def unlink(self, path: Path) -> None:
        """Remove a file."""
        path.unlink(missing_ok=True)


class DryRunFileSystem(RealFileSystem):
    """Read-through filesystem that only logs writes."""

    def write_text(self, path: Path, content: str) -> None:
        logger.info("DRY RUN: write %s (%d bytes)", path, len(content.encode("utf-8")))

    def mkdir(self, path: Path) -> None:
        logger.info("DRY RUN: mkdir -p %s", path)

    def chmod(self, path: Path, mode: int) -> None:
        logger.info("DRY RUN: chmod %o %s", mode, path)

    def unlink(self, path: Path) -> None:
        logger.info("DRY RUN: rm -f %s", path)


def create_filesystem(dry_run: bool) -> FileSystem:
    """Get the filesystem matching the execution mode."""
    return DryRunFileSystem() if dry_run else RealFileSystem()
