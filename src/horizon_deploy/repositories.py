"""Repository registration for pacman and OSTree."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path

from horizon_deploy.models import Repository
from horizon_deploy.protocols import CommandRunner, FileSystem

logger = logging.getLogger(__name__)

PACMAN_REPOS_FILE = "pacman-repos.conf"
OSTREE_REPOS_FILE = "ostree-repos.json"


def render_pacman_repos(repositories: Sequence[Repository]) -> str:
    """Render pacman repository sections, lowest priority value first."""
    sections = []
    for repo in sorted(repositories, key=lambda r: (r.priority, r.name)):
        lines = [f"[{repo.name}]", f"Server = {repo.url}"]
        if not repo.gpg_check:
            lines.append("SigLevel = Never")
        sections.append("\n".join(lines))
    return "\n\n".join(sections) + "\n"


class RepositoryManager:
    """Writes repository definitions and registers OSTree remotes."""

    def __init__(
        self,
        runner: CommandRunner,
        filesystem: FileSystem,
        config_dir: Path,
        ostree_repo: Path,
    ) -> None:
        self.runner = runner
        self.fs = filesystem
        self.config_dir = config_dir
        self.ostree_repo = ostree_repo

    def configure(self, repositories: Sequence[Repository]) -> None:
        """Register every enabled repository.

        Package repositories are collected into pacman-repos.conf. OSTree
        repositories are recorded in ostree-repos.json and added as remotes.

        Args:
            repositories: Declared repositories; disabled ones are skipped.
        """
        enabled = [r for r in repositories if r.enabled]
        package_repos = [r for r in enabled if not r.is_ostree]
        ostree_repos = [r for r in enabled if r.is_ostree]

        if package_repos:
            self.fs.write_text(self.config_dir / PACMAN_REPOS_FILE, render_pacman_repos(package_repos))
        if ostree_repos:
            payload = [r.model_dump(mode="json", by_alias=True) for r in ostree_repos]
            self.fs.write_text(self.config_dir / OSTREE_REPOS_FILE, json.dumps(payload, indent=2))
            for repo in ostree_repos:
                self._add_remote(repo)

        logger.info(
            "Registered %d package and %d OSTree repositories",
            len(package_repos),
            len(ostree_repos),
        )

    def _add_remote(self, repo: Repository) -> None:
        args = ["ostree", "remote", "add", f"--repo={self.ostree_repo}", "--if-not-exists"]
        if not repo.gpg_check:
            args.append("--no-gpg-verify")
        args += [repo.name, repo.url, *repo.branches]
        self.runner.run(args)
