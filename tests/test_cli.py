"""Tests for CLI commands using context injection.

Commands accept a _context parameter for dependency injection, so they can
be exercised without a real host or settings file.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import typer

from horizon_deploy import cli
from horizon_deploy.changes import ChangeType, ConfigChange, ImpactLevel, UpdateStrategy
from horizon_deploy.context import AppContext
from horizon_deploy.errors import LayerError, OstreeError
from horizon_deploy.models import CompiledConfig, LayerPurpose
from horizon_deploy.settings import EngineSettings
from horizon_deploy.types import (
    ContainerState,
    ExecutionError,
    ExecutionErrorKind,
    ExecutionOperation,
    ExecutionResult,
    LayerInfo,
    LayerStatus,
    OperationKind,
    SystemStatus,
)

from conftest import make_layer


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Keep commands from reconfiguring the root logger."""
    mock = MagicMock()
    monkeypatch.setattr(cli, "configure_logging", mock)
    return mock


@pytest.fixture
def mock_engine() -> MagicMock:
    """Create a mock ExecutionEngine."""
    return MagicMock()


@pytest.fixture
def mock_context(mock_engine: MagicMock) -> AppContext:
    """Create an AppContext around the mock engine."""
    return AppContext(settings=EngineSettings(), engine=mock_engine)


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "system.json"
    path.write_text(json.dumps(data))
    return path


class TestValidateCommand:
    """Tests for the validate command."""

    def test_valid(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Test a valid configuration reports success."""
        path = _write(tmp_path, {"system": {"hostname": "box"}})

        cli.validate_command(file=path)

        assert "Configuration is valid" in capsys.readouterr().out

    def test_invalid(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Test every error is listed and the exit code is 1."""
        path = _write(tmp_path, {"system": {"hostname": "bad!"}, "users": [{"name": "x", "uid": 5}]})

        with pytest.raises(typer.Exit) as exc_info:
            cli.validate_command(file=path)

        assert exc_info.value.exit_code == 1
        out = capsys.readouterr().out
        assert "Invalid hostname: bad!" in out
        assert "Invalid UID: 5" in out

    def test_unreadable(self, tmp_path: Path) -> None:
        """Test a missing file exits with 1."""
        with pytest.raises(typer.Exit) as exc_info:
            cli.validate_command(file=tmp_path / "missing.json")

        assert exc_info.value.exit_code == 1


class TestPlanCommand:
    """Tests for the plan command."""

    def _layer(self, name: str, deps: list[str]) -> dict:
        return {"name": name, "dependencies": deps, "container": {"image": "docker.io/archlinux/archlinux"}}

    def test_plan(
        self,
        tmp_path: Path,
        mock_context: AppContext,
        mock_engine: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test the resolved order is shown, noting nothing was applied yet."""
        mock_engine.pending_changes.return_value = None
        path = _write(tmp_path, {"layers": {"system": [self._layer("b", ["a"]), self._layer("a", [])]}})

        cli.plan_command(file=path, _context=mock_context)

        out = capsys.readouterr().out
        assert "Layer Order" in out
        assert "No configuration applied yet" in out

    def test_plan_shows_pending_changes(
        self,
        tmp_path: Path,
        mock_context: AppContext,
        mock_engine: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test changes from the applied configuration are listed with their strategy."""
        mock_engine.pending_changes.return_value = [
            ConfigChange(
                ChangeType.USER_REMOVE,
                "Remove users: bob",
                UpdateStrategy.REBOOT_REQUIRED,
                ImpactLevel.CRITICAL,
                ("bob",),
            ),
        ]
        path = _write(tmp_path, {})

        cli.plan_command(file=path, _context=mock_context)

        out = capsys.readouterr().out
        assert "Remove users: bob" in out
        assert "Reboot required for 1 change(s)" in out
        assert isinstance(mock_engine.pending_changes.call_args.args[0], CompiledConfig)

    def test_plan_in_sync(
        self,
        tmp_path: Path,
        mock_context: AppContext,
        mock_engine: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test an unchanged configuration is reported as such."""
        mock_engine.pending_changes.return_value = []

        cli.plan_command(file=_write(tmp_path, {}), _context=mock_context)

        assert "No changes from the applied configuration" in capsys.readouterr().out

    def test_unreadable_applied_config(self, tmp_path: Path, mock_context: AppContext, mock_engine: MagicMock) -> None:
        """Test a corrupt applied configuration exits with 1."""
        mock_engine.pending_changes.side_effect = ValueError("bad json")

        with pytest.raises(typer.Exit) as exc_info:
            cli.plan_command(file=_write(tmp_path, {}), _context=mock_context)

        assert exc_info.value.exit_code == 1

    def test_cycle(
        self, tmp_path: Path, mock_context: AppContext, mock_engine: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test resolution issues are listed and exit with 1."""
        path = _write(tmp_path, {"layers": {"system": [self._layer("x", ["y"]), self._layer("y", ["x"])]}})

        with pytest.raises(typer.Exit):
            cli.plan_command(file=path, _context=mock_context)

        assert "Circular dependency" in capsys.readouterr().out
        mock_engine.pending_changes.assert_not_called()

    def test_invalid_configuration(self, tmp_path: Path, mock_context: AppContext, mock_engine: MagicMock) -> None:
        """Test planning an invalid configuration fails."""
        path = _write(tmp_path, {"system": {"timezone": "Not A Zone"}})

        with pytest.raises(typer.Exit):
            cli.plan_command(file=path, _context=mock_context)

        mock_engine.pending_changes.assert_not_called()


class TestApplyCommand:
    """Tests for the apply command."""

    def test_success(
        self,
        tmp_path: Path,
        mock_context: AppContext,
        mock_engine: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test a successful deployment shows the commit."""
        mock_engine.execute.return_value = ExecutionResult(
            success=True,
            commit_id="abc123",
            operations=(ExecutionOperation(OperationKind.OSTREE_COMMIT, "Commit"),),
            layer_status={"dev": LayerStatus.HEALTH_CHECK_FAILED},
        )
        path = _write(tmp_path, {"system": {"hostname": "box"}})

        cli.apply_command(file=path, _context=mock_context)

        config = mock_engine.execute.call_args.args[0]
        assert isinstance(config, CompiledConfig)
        assert config.system.hostname == "box"
        assert callable(mock_engine.execute.call_args.kwargs["cancel_check"])
        out = capsys.readouterr().out
        assert "Deployed commit abc123" in out
        assert "failed its health check" in out

    def test_failure(
        self,
        tmp_path: Path,
        mock_context: AppContext,
        mock_engine: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test a failed deployment lists errors and exits with 1."""
        mock_engine.execute.return_value = ExecutionResult(
            success=False,
            errors=(
                ExecutionError(ExecutionErrorKind.OSTREE, "repo locked"),
                ExecutionError(ExecutionErrorKind.ROLLBACK_FAILED, "no previous deployment"),
            ),
        )
        path = _write(tmp_path, {})

        with pytest.raises(typer.Exit) as exc_info:
            cli.apply_command(file=path, _context=mock_context)

        assert exc_info.value.exit_code == 1
        out = capsys.readouterr().out
        assert "OSTree error: repo locked" in out
        assert "Rollback failed: no previous deployment" in out

    def test_verbose_logging(
        self, tmp_path: Path, mock_context: AppContext, mock_engine: MagicMock, no_logging_setup: MagicMock
    ) -> None:
        """Test --verbose switches logging to DEBUG."""
        mock_engine.execute.return_value = ExecutionResult(success=True, commit_id="abc")

        cli.apply_command(file=_write(tmp_path, {}), verbose=True, _context=mock_context)

        no_logging_setup.assert_called_once_with("DEBUG")

    def test_unreadable_config_does_not_deploy(
        self, tmp_path: Path, mock_context: AppContext, mock_engine: MagicMock
    ) -> None:
        """Test a broken file stops before the engine runs."""
        path = tmp_path / "broken.json"
        path.write_text("{")

        with pytest.raises(typer.Exit):
            cli.apply_command(file=path, _context=mock_context)

        mock_engine.execute.assert_not_called()


class TestRollbackCommand:
    """Tests for the rollback command."""

    def test_confirmed(self, mock_context: AppContext, mock_engine: MagicMock) -> None:
        """Test --yes rolls back without prompting."""
        mock_engine.rollback.return_value = ExecutionResult(success=True, commit_id="abc")

        cli.rollback_command(commit="abc", yes=True, _context=mock_context)

        mock_engine.rollback.assert_called_once_with("abc")

    def test_declined(
        self, mock_context: AppContext, mock_engine: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test declining the prompt does nothing."""
        monkeypatch.setattr(cli.out, "confirm", lambda message: False)

        with pytest.raises(typer.Exit):
            cli.rollback_command(commit="abc", _context=mock_context)

        mock_engine.rollback.assert_not_called()

    def test_failure(self, mock_context: AppContext, mock_engine: MagicMock) -> None:
        """Test a failed rollback exits with 1."""
        mock_engine.rollback.return_value = ExecutionResult(
            success=False,
            errors=(ExecutionError(ExecutionErrorKind.ROLLBACK_FAILED, "unknown commit"),),
        )

        with pytest.raises(typer.Exit) as exc_info:
            cli.rollback_command(commit="nope", yes=True, _context=mock_context)

        assert exc_info.value.exit_code == 1


class TestStatusCommand:
    """Tests for the status command."""

    def test_status(
        self, mock_context: AppContext, mock_engine: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test status shows the booted commit and host details."""
        mock_engine.status.return_value = SystemStatus(
            current_commit="abc123",
            available_commits=("abc123", "def456"),
            kernel_version="6.9.7",
            uptime="up 1 hour",
        )

        cli.status_command(_context=mock_context)

        out = capsys.readouterr().out
        assert "abc123" in out
        assert "def456" in out
        assert "6.9.7" in out

    def test_status_compares_config(
        self,
        tmp_path: Path,
        mock_context: AppContext,
        mock_engine: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test --config passes the loaded configuration and lists its pending changes."""
        change = ConfigChange(
            ChangeType.SYSTEM_CONFIG, "Hostname change: a -> b", UpdateStrategy.LIVE, ImpactLevel.LOW, ("hostname",)
        )
        mock_engine.status.return_value = SystemStatus(
            current_commit="abc123",
            available_commits=("abc123",),
            kernel_version="6.9.7",
            uptime="up 1 hour",
            pending_changes=(change,),
        )

        cli.status_command(config_file=_write(tmp_path, {"system": {"hostname": "b"}}), _context=mock_context)

        config = mock_engine.status.call_args.args[0]
        assert config.system.hostname == "b"
        out = capsys.readouterr().out
        assert "1 pending changes" in out
        assert "Hostname change: a -> b" in out
        assert "Live update possible" in out

    def test_status_in_sync(
        self, mock_context: AppContext, mock_engine: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test an empty diff is reported as in sync."""
        mock_engine.status.return_value = SystemStatus(
            current_commit="abc123",
            available_commits=(),
            kernel_version="6.9.7",
            uptime="up 1 hour",
            pending_changes=(),
        )

        cli.status_command(_context=mock_context)

        assert "in sync" in capsys.readouterr().out

    def test_status_nothing_applied(
        self,
        tmp_path: Path,
        mock_context: AppContext,
        mock_engine: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test comparing against a host with no applied configuration says so."""
        mock_engine.status.return_value = SystemStatus(
            current_commit=None, available_commits=(), kernel_version="6.9.7", uptime="up 1 hour"
        )

        cli.status_command(config_file=_write(tmp_path, {}), _context=mock_context)

        assert "No configuration applied yet" in capsys.readouterr().out

    def test_status_error(self, mock_context: AppContext, mock_engine: MagicMock) -> None:
        """Test ostree failures exit with 1."""
        mock_engine.status.side_effect = OstreeError("ostree not installed")

        with pytest.raises(typer.Exit) as exc_info:
            cli.status_command(_context=mock_context)

        assert exc_info.value.exit_code == 1


class TestVersion:
    """Tests for the --version flag."""

    def test_version_callback(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test the version is printed and the program exits."""
        with pytest.raises(typer.Exit):
            cli.version_callback(True)

        assert "horizonos-deploy v" in capsys.readouterr().out

    def test_version_callback_noop(self) -> None:
        """Test nothing happens without the flag."""
        cli.version_callback(False)


class TestLayerCommands:
    """Tests for the layer sub-commands."""

    def test_list(
        self, mock_context: AppContext, mock_engine: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test deployed layers are listed with their states and a running count."""
        mock_engine.list_layers.return_value = [
            LayerInfo(make_layer("dev", purpose=LayerPurpose.DEVELOPMENT), ContainerState.RUNNING),
            LayerInfo(make_layer("media"), ContainerState.STOPPED),
        ]

        cli.layer_list_command(_context=mock_context)

        out = capsys.readouterr().out
        assert "dev" in out
        assert "stopped" in out
        assert "2 layers, 1 running" in out

    def test_list_empty(
        self, mock_context: AppContext, mock_engine: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test an empty layer list is reported."""
        mock_engine.list_layers.return_value = []

        cli.layer_list_command(_context=mock_context)

        assert "No system layers deployed" in capsys.readouterr().out

    def test_start(
        self, mock_context: AppContext, mock_engine: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test start delegates to the engine."""
        cli.layer_start_command(name="dev", _context=mock_context)

        mock_engine.start_layer.assert_called_once_with("dev")
        assert "Started layer 'dev'" in capsys.readouterr().out

    def test_stop(self, mock_context: AppContext, mock_engine: MagicMock) -> None:
        """Test stop delegates to the engine."""
        cli.layer_stop_command(name="dev", _context=mock_context)

        mock_engine.stop_layer.assert_called_once_with("dev")

    def test_unknown_layer(
        self, mock_context: AppContext, mock_engine: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test a lifecycle error is shown and exits with 1."""
        mock_engine.start_layer.side_effect = LayerError("Layer 'ghost' is not deployed")

        with pytest.raises(typer.Exit) as exc_info:
            cli.layer_start_command(name="ghost", _context=mock_context)

        assert exc_info.value.exit_code == 1
        assert "Layer 'ghost' is not deployed" in capsys.readouterr().out

    def test_remove_confirmed(self, mock_context: AppContext, mock_engine: MagicMock) -> None:
        """Test --yes removes without prompting."""
        cli.layer_remove_command(name="media", yes=True, _context=mock_context)

        mock_engine.remove_layer.assert_called_once_with("media")

    def test_remove_declined(
        self, mock_context: AppContext, mock_engine: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test declining the prompt keeps the layer."""
        monkeypatch.setattr(cli.out, "confirm", lambda message: False)

        with pytest.raises(typer.Exit):
            cli.layer_remove_command(name="media", _context=mock_context)

        mock_engine.remove_layer.assert_not_called()

    def test_remove_required_layer(self, mock_context: AppContext, mock_engine: MagicMock) -> None:
        """Test removing a layer others depend on exits with 1."""
        mock_engine.remove_layer.side_effect = LayerError("Layer 'dev' is required by media")

        with pytest.raises(typer.Exit) as exc_info:
            cli.layer_remove_command(name="dev", yes=True, _context=mock_context)

        assert exc_info.value.exit_code == 1
