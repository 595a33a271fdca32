"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from horizon_deploy.builder import ConfigBuilder, LayersBuilder
from horizon_deploy.engine import ExecutionEngine
from horizon_deploy.errors import CommandError
from horizon_deploy.executor import CommandResult
from horizon_deploy.filesystem import create_filesystem
from horizon_deploy.models import (
    CompiledConfig,
    ContainerRuntime,
    DesktopEnvironment,
    HealthCheck,
    LayerPurpose,
    SystemContainer,
    SystemLayer,
)
from horizon_deploy.settings import EngineSettings

# ============================================================================
# Scripted command runner
# ============================================================================


@dataclass
class _Rule:
    prefix: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool
    times: int | None


class FakeRunner:
    """CommandRunner double that records calls and replays scripted outcomes.

    Rules match on an argv prefix; the most recently added matching rule wins.
    Unmatched commands succeed with empty output.
    """

    def __init__(self, dry_run: bool = False) -> None:
        self.dry_run = dry_run
        self.calls: list[tuple[str, ...]] = []
        self.inputs: list[str | None] = []
        self.timeouts: list[float | None] = []
        self._rules: list[_Rule] = []

    def respond(
        self,
        *prefix: str,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        timed_out: bool = False,
        times: int | None = None,
    ) -> FakeRunner:
        self._rules.append(_Rule(tuple(prefix), exit_code, stdout, stderr, timed_out, times))
        return self

    def fail(self, *prefix: str, exit_code: int = 1, stderr: str = "boom", times: int | None = None) -> FakeRunner:
        return self.respond(*prefix, exit_code=exit_code, stderr=stderr, times=times)

    def _match(self, argv: tuple[str, ...]) -> _Rule | None:
        for rule in reversed(self._rules):
            if argv[: len(rule.prefix)] == rule.prefix and rule.times != 0:
                if rule.times is not None:
                    rule.times -= 1
                return rule
        return None

    def run(
        self,
        args: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        argv = tuple(str(a) for a in args)
        self.calls.append(argv)
        self.inputs.append(input)
        self.timeouts.append(timeout)
        if self.dry_run:
            return CommandResult(argv)

        rule = self._match(argv)
        if rule is None:
            return CommandResult(argv)
        if rule.timed_out:
            raise CommandError(list(argv), None, timed_out=True)
        result = CommandResult(argv, rule.exit_code, rule.stdout, rule.stderr)
        if not result.ok and check:
            raise CommandError(list(argv), result.exit_code, result.stderr)
        return result

    def called(self, *prefix: str) -> list[tuple[str, ...]]:
        """Get recorded calls starting with a prefix."""
        return [c for c in self.calls if c[: len(prefix)] == prefix]


# ============================================================================
# Engine fixtures
# ============================================================================


@pytest.fixture
def runner() -> FakeRunner:
    """Runner scripted for a healthy root host with one booted commit."""
    return (
        FakeRunner()
        .respond("id", "-u", stdout="0\n")
        .respond("ostree", "commit", stdout="newcommit123\n")
        .respond("ostree", "admin", "status", stdout="* horizonos prevcommit456.0\n    origin refspec: horizonos/stable/x86_64\n")
    )


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    """Engine settings rooted in a temporary directory with an existing repo."""
    repo = tmp_path / "ostree" / "repo"
    repo.mkdir(parents=True)
    return EngineSettings(ostree_repo=repo, system_root=tmp_path / "root")


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_engine(settings: EngineSettings, sleeps: list[float]) -> Callable[..., ExecutionEngine]:
    """Factory building an engine around a runner."""

    def _make(runner: FakeRunner, **setting_overrides: Any) -> ExecutionEngine:
        engine_settings = settings.model_copy(update=setting_overrides)
        return ExecutionEngine.create(
            engine_settings,
            runner=runner,
            filesystem=create_filesystem(engine_settings.dry_run),
            sleep=sleeps.append,
        )

    return _make


@pytest.fixture
def engine(make_engine: Callable[..., ExecutionEngine], runner: FakeRunner) -> ExecutionEngine:
    return make_engine(runner)


# ============================================================================
# Configuration fixtures
# ============================================================================


def make_layer(
    name: str,
    dependencies: Sequence[str] = (),
    priority: int = 50,
    **fields: Any,
) -> SystemLayer:
    """Build a minimal system layer."""
    fields.setdefault("container", SystemContainer(image="docker.io/archlinux/archlinux"))
    return SystemLayer(name=name, dependencies=tuple(dependencies), priority=priority, **fields)


@pytest.fixture
def minimal_config() -> CompiledConfig:
    """A valid configuration with only system identity."""
    return CompiledConfig()


@pytest.fixture
def full_config() -> CompiledConfig:
    """A valid configuration exercising every deployment stage."""
    layers = (
        LayersBuilder()
        .system_layer(
            "dev",
            LayerPurpose.DEVELOPMENT,
            container=SystemContainer(
                image="docker.io/archlinux/archlinux",
                runtime=ContainerRuntime.PODMAN,
                packages=("git", "gcc"),
                binaries=("git",),
            ),
            priority=10,
            health_check=HealthCheck(command="git --version", interval="5s", timeout="2s", retries=2, start_period="0s"),
        )
        .system_layer(
            "media",
            LayerPurpose.MULTIMEDIA,
            dependencies=["dev"],
            priority=20,
            auto_start=True,
        )
        .flatpak("org.mozilla.firefox")
        .snap("code", classic=True)
    )
    return (
        ConfigBuilder()
        .system(hostname="workstation", timezone="Europe/Berlin", locale="en_US.UTF-8")
        .install("git", "fish")
        .remove("nano")
        .service("sshd")
        .user("alice", uid=1000, groups=["wheel"])
        .repository("horizonos-extra", "https://repo.horizonos.dev/extra")
        .desktop(DesktopEnvironment.PLASMA, auto_login_user="alice")
        .workflow("backup", "run-backup", trigger="daily")
        .layers(layers)
        .build()
    )
