"""Unit tests for rulebook.scripts module."""

import os
import sys
from pathlib import Path

import pytest

from rulebook.scripts import RALPH_SCRIPTS, install_ralph_scripts


class TestInstallRalphScripts:
    """Tests for install_ralph_scripts function."""

    def test_installs_all_scripts(self, tmp_path: Path) -> None:
        installed = install_ralph_scripts(tmp_path)
        assert len(installed) == len(RALPH_SCRIPTS) * 2
        assert "rulebook/scripts/ralph-run.sh" in installed
        assert "rulebook/scripts/ralph-run.bat" in installed
        for rel in installed:
            assert (tmp_path / rel).is_file()

    def test_custom_directory(self, tmp_path: Path) -> None:
        installed = install_ralph_scripts(tmp_path, ".rb")
        assert installed[0].startswith(".rb/scripts/")

    def test_overwrites_existing(self, tmp_path: Path) -> None:
        target = tmp_path / "rulebook" / "scripts" / "ralph-status.sh"
        target.parent.mkdir(parents=True)
        target.write_text("stale")
        install_ralph_scripts(tmp_path)
        assert target.read_text() != "stale"

    @pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permissions")
    def test_shell_scripts_executable(self, tmp_path: Path) -> None:
        install_ralph_scripts(tmp_path)
        assert os.access(tmp_path / "rulebook" / "scripts" / "ralph-init.sh", os.X_OK)
