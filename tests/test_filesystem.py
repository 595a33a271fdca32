"""Tests for filesystem abstraction."""

from __future__ import annotations

from pathlib import Path

import pytest

from horizon_deploy.filesystem import DryRunFileSystem, RealFileSystem, create_filesystem
from horizon_deploy.protocols import FileSystem


class TestRealFileSystem:
    """Tests for RealFileSystem implementation."""

    def test_satisfies_protocol(self) -> None:
        """Test RealFileSystem is a FileSystem."""
        assert isinstance(RealFileSystem(), FileSystem)

    def test_read_text(self, tmp_path: Path) -> None:
        """Test reading text content from a file."""
        fs = RealFileSystem()
        test_file = tmp_path / "test.txt"
        test_file.write_text("Hello, World!")

        content = fs.read_text(test_file)

        assert content == "Hello, World!"

    def test_read_text_not_found(self, tmp_path: Path) -> None:
        """Test reading a non-existent file raises FileNotFoundError."""
        fs = RealFileSystem()

        with pytest.raises(FileNotFoundError):
            fs.read_text(tmp_path / "missing.txt")

    def test_write_text_creates_parents(self, tmp_path: Path) -> None:
        """Test writing into a directory that does not exist yet."""
        fs = RealFileSystem()
        target = tmp_path / "etc" / "horizonos" / "config.json"

        fs.write_text(target, "{}")

        assert target.read_text() == "{}"

    def test_write_text_replaces_without_leftovers(self, tmp_path: Path) -> None:
        """Test an overwrite leaves only the target file behind."""
        fs = RealFileSystem()
        target = tmp_path / "locale.conf"
        target.write_text("LANG=C\n")

        fs.write_text(target, "LANG=en_US.UTF-8\n")

        assert target.read_text() == "LANG=en_US.UTF-8\n"
        assert [p.name for p in tmp_path.iterdir()] == ["locale.conf"]

    def test_mkdir_chmod_unlink(self, tmp_path: Path) -> None:
        """Test directory creation, permission changes and removal."""
        fs = RealFileSystem()
        directory = tmp_path / "a" / "b"
        fs.mkdir(directory)
        fs.mkdir(directory)
        script = directory / "tool"
        script.write_text("#!/bin/sh\n")

        fs.chmod(script, 0o755)
        assert script.stat().st_mode & 0o777 == 0o755

        fs.unlink(script)
        fs.unlink(script)
        assert fs.exists(script) is False
        assert fs.exists(directory) is True


class TestDryRunFileSystem:
    """Tests for DryRunFileSystem."""

    def test_mutations_are_logged_only(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        """Test no write, mkdir, chmod or unlink reaches the disk."""
        fs = DryRunFileSystem()
        existing = tmp_path / "keep.txt"
        existing.write_text("original")

        with caplog.at_level("INFO"):
            fs.mkdir(tmp_path / "new")
            fs.write_text(tmp_path / "new" / "file.txt", "data")
            fs.write_text(existing, "changed")
            fs.chmod(existing, 0o700)
            fs.unlink(existing)

        assert not (tmp_path / "new").exists()
        assert existing.read_text() == "original"
        assert "DRY RUN: write" in caplog.text

    def test_reads_pass_through(self, tmp_path: Path) -> None:
        """Test reads see the real filesystem."""
        (tmp_path / "f").write_text("x")
        fs = DryRunFileSystem()

        assert fs.exists(tmp_path / "f")
        assert fs.read_text(tmp_path / "f") == "x"


class TestCreateFilesystem:
    """Tests for create_filesystem."""

    def test_modes(self) -> None:
        """Test the dry-run flag selects the implementation."""
        assert type(create_filesystem(False)) is RealFileSystem
        assert type(create_filesystem(True)) is DryRunFileSystem
