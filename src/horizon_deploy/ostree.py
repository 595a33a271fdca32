"""OSTree manager: commit, deploy and roll back the base tree.

Each operation is one `ostree` invocation through the command runner. Any
command failure is re-raised as `OstreeError`.
"""

from __future__ import annotations

import json
import logging
import tempfile
from collections.abc import Sequence
from pathlib import Path

from horizon_deploy.errors import CommandError, OstreeError
from horizon_deploy.models import CompiledConfig
from horizon_deploy.protocols import CommandRunner, FileSystem

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "HorizonOS configuration update"


class OstreeManager:
    """Wraps the ostree CLI for one repository and sysroot."""

    def __init__(
        self,
        runner: CommandRunner,
        filesystem: FileSystem,
        repo: Path,
        os_name: str = "horizonos",
        sysroot: Path | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            runner: Command runner for ostree invocations.
            filesystem: Filesystem used to stage commit content.
            repo: OSTree repository path.
            os_name: Stateroot name passed to `ostree admin`.
            sysroot: Target sysroot; None or "/" means the running system.
        """
        self.runner = runner
        self.fs = filesystem
        self.repo = repo
        self.os_name = os_name
        self.sysroot = sysroot

    def _admin(self, *args: str) -> list[str]:
        cmd = ["ostree", "admin", *args, f"--os={self.os_name}"]
        if self.sysroot is not None and self.sysroot != Path("/"):
            cmd.append(f"--sysroot={self.sysroot}")
        return cmd

    def _run(self, cmd: list[str]) -> str:
        try:
            return self.runner.run(cmd).stdout
        except CommandError as e:
            raise OstreeError(str(e)) from e

    def check_repository(self) -> None:
        """Fail fast if the repository is unreachable.

        Raises:
            OstreeError: If the repository path does not exist.
        """
        if not self.fs.exists(self.repo):
            raise OstreeError(f"Repository not found: {self.repo}")

    def commit(
        self,
        config: CompiledConfig,
        layer_names: Sequence[str],
        branch: str,
        subject: str = DEFAULT_SUBJECT,
    ) -> str:
        """Stage the compiled configuration as a new revision.

        The tree holds `config.json` (the configuration) and `layers.json`
        (the resolved layer order). The running system is not affected.

        Args:
            config: Configuration to record.
            layer_names: Resolved system layer order.
            branch: Ref the commit is written to.
            subject: Commit subject line.

        Returns:
            The new commit checksum ("" in dry-run mode).

        Raises:
            OstreeError: If staging or the commit command fails.
        """
        with tempfile.TemporaryDirectory(prefix="horizonos-commit-") as tmp:
            tree = Path(tmp)
            try:
                self.fs.write_text(tree / "config.json", config.model_dump_json(by_alias=True, indent=2))
                self.fs.write_text(tree / "layers.json", json.dumps(list(layer_names), indent=2))
            except OSError as e:
                raise OstreeError(f"Cannot stage commit content: {e}") from e

            commit_id = self._run([
                "ostree", "commit",
                f"--repo={self.repo}",
                f"--tree=dir={tree}",
                f"--subject={subject}",
                f"--branch={branch}",
            ]).strip()

        logger.info("Committed %s to %s", commit_id or "(dry run)", branch)
        return commit_id

    def deploy(self, ref: str) -> None:
        """Make a committed revision the next boot target.

        Args:
            ref: Commit checksum or branch.
        """
        self._run(self._admin("deploy", ref))
        logger.info("Deployed %s", ref)

    def rollback(self, commit_id: str | None) -> None:
        """Re-activate a previous revision.

        Args:
            commit_id: Revision to re-deploy. None removes the newest
                deployment, falling back to whatever was there before; only
                pass None right after a successful `deploy`.
        """
        if commit_id:
            self._run(self._admin("deploy", commit_id))
        else:
            self._run(self._admin("undeploy", "0"))
        logger.warning("Rolled back to %s", commit_id or "previous deployment")

    def current_commit(self) -> str | None:
        """Get the checksum of the booted deployment, if any."""
        for line in self._run(self._admin("status")).splitlines():
            tokens = line.split()
            if len(tokens) >= 3 and tokens[0] == "*":
                return tokens[2].split(".", 1)[0]
        return None

    def available_commits(self, branch: str) -> list[str]:
        """Get commit checksums on a branch, newest first."""
        output = self._run(["ostree", "log", f"--repo={self.repo}", branch])
        commits = []
        for line in output.splitlines():
            tokens = line.split()
            if len(tokens) >= 2 and tokens[0] == "commit":
                commits.append(tokens[1])
        return commits

    def verify_commit(self, branch: str, commit_id: str) -> None:
        """Check that a pinned commit is in a branch's history.

        Abbreviated checksums match by prefix.

        Raises:
            OstreeError: If the commit is not on the branch or the log
                cannot be read.
        """
        if not any(c.startswith(commit_id) for c in self.available_commits(branch)):
            raise OstreeError(f"Commit {commit_id} not found on {branch}")
