"""Unit tests for rulebook.commands - command handlers called directly."""

import argparse
import json
from pathlib import Path
from typing import Any, Iterator
from unittest.mock import MagicMock, patch

import pytest

from rulebook.commands import (
    cmd_check_coverage,
    cmd_config,
    cmd_init,
    cmd_ralph,
    cmd_task,
    cmd_update,
    cmd_validate,
    cmd_workflows,
)
from rulebook.coverage import CoverageResult
from rulebook.config import ConfigManager
from rulebook.loop import LoopSummary
from rulebook.ralph import RalphManager
from rulebook.utils import strip_ansi


def _args(**kwargs: Any) -> argparse.Namespace:
    defaults = dict(yes=True, max_iterations=None, tool=None, parallel=None, limit=None, no_ui=True)
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


def _answers(*values: str):
    it: Iterator[str] = iter(values)
    return lambda prompt: next(it)


def _out(capsys: pytest.CaptureFixture) -> str:
    return strip_ansi(capsys.readouterr().out)


@pytest.fixture
def python_project(tmp_path: Path) -> Path:
    (tmp_path / "pyproject.toml").write_text("[project]\nname = 'demo'\n")
    (tmp_path / "demo.py").write_text("print('hi')\n")
    return tmp_path


class TestInit:
    """Tests for cmd_init, cmd_update and cmd_validate."""

    def test_init_yes(self, python_project: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_init(python_project, yes=True) == 0
        out = _out(capsys)
        assert "Rulebook initialized!" in out
        config = ConfigManager(python_project).load()
        assert config.languages == ["python"]
        assert (python_project / "rulebook" / "tasks" / "archive").is_dir()
        assert "<!-- PYTHON:START -->" in (python_project / "AGENTS.md").read_text()

    def test_init_uses_global_defaults(self, python_project: Path, default_global_config) -> None:
        default_global_config.tool = "amp"
        default_global_config.max_iterations = 7
        cmd_init(python_project, yes=True)
        config = ConfigManager(python_project).load()
        assert config.ralph.tool == "amp"
        assert config.ralph.max_iterations == 7

    def test_init_interactive_overrides(self, python_project: Path) -> None:
        assert cmd_init(python_project, input_fn=_answers("python, go", "github", "y")) == 0
        config = ConfigManager(python_project).load()
        assert config.languages == ["python", "go"]
        assert config.modules == ["github"]

    def test_init_aborted(self, python_project: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_init(python_project, input_fn=_answers("", "", "n")) == 1
        assert "Aborted" in _out(capsys)
        assert not (python_project / "AGENTS.md").exists()

    def test_reinit_keeps_project_id(self, python_project: Path) -> None:
        cmd_init(python_project, yes=True)
        project_id = ConfigManager(python_project).load().project_id
        assert cmd_init(python_project, yes=True, minimal=True) == 0
        config = ConfigManager(python_project).load()
        assert config.project_id == project_id
        assert config.mode == "minimal"

    def test_update_requires_init(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_update(tmp_path) == 1
        assert "not initialized" in _out(capsys)

    def test_update_restores_blocks(self, python_project: Path, capsys: pytest.CaptureFixture) -> None:
        cmd_init(python_project, yes=True)
        (python_project / "AGENTS.md").write_text("# Mine\n")
        assert cmd_update(python_project) == 0
        assert "<!-- RULEBOOK:START -->" in (python_project / "AGENTS.md").read_text()

    def test_validate(self, python_project: Path, capsys: pytest.CaptureFixture, write_task) -> None:
        cmd_init(python_project, yes=True)
        write_task(python_project / "rulebook" / "tasks", "good-task")
        capsys.readouterr()
        assert cmd_validate(python_project) == 0
        out = _out(capsys)
        assert "✓ AGENTS.md" in out
        assert "✓ good-task" in out

    def test_validate_reports_problems(self, python_project: Path, capsys: pytest.CaptureFixture, write_task) -> None:
        cmd_init(python_project, yes=True)
        (python_project / "AGENTS.md").write_text("# nothing\n")
        write_task(python_project / "rulebook" / "tasks", "bad-task", why="short")
        capsys.readouterr()
        assert cmd_validate(python_project) == 1
        out = _out(capsys)
        assert "✗ AGENTS.md missing blocks: RULEBOOK, PYTHON" in out
        assert "✗ bad-task" in out


class TestTask:
    """Tests for cmd_task."""

    def test_create_show_status_archive(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_task(project_root, "create", "add-auth") == 0
        assert "Task created: rulebook/tasks/add-auth" in _out(capsys)

        assert cmd_task(project_root, "show", "add-auth") == 0
        out = _out(capsys)
        assert "Status: pending" in out
        assert "Checklist: 0/6" in out

        assert cmd_task(project_root, "status", "add-auth", "in-progress") == 0
        assert cmd_task(project_root, "status", "add-auth") == 0
        assert "Status: in-progress" in _out(capsys)

        assert cmd_task(project_root, "archive", "add-auth") == 0
        assert "Archived: rulebook/tasks/archive/" in _out(capsys)

    def test_list(self, project_root: Path, capsys: pytest.CaptureFixture, write_task) -> None:
        assert cmd_task(project_root, "list") == 0
        assert "No tasks" in _out(capsys)
        write_task(project_root / "rulebook" / "tasks", "one-task", checklist=["- [x] A", "- [ ] B"])
        cmd_task(project_root, "list")
        assert "one-task 1/2" in _out(capsys)

    def test_validate_invalid(self, project_root: Path, capsys: pytest.CaptureFixture, write_task) -> None:
        write_task(project_root / "rulebook" / "tasks", "bad-task", why="short")
        assert cmd_task(project_root, "validate", "bad-task") == 1
        assert "✗ Purpose section" in _out(capsys)

    def test_errors(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_task(project_root, None) == 1
        assert cmd_task(project_root, "show") == 1
        assert cmd_task(project_root, "show", "ghost") == 1
        assert "Error: Task ghost not found" in _out(capsys)
        assert cmd_task(project_root, "explode", "x") == 1
        assert "Unknown task action: explode" in _out(capsys)


class TestRalph:
    """Tests for cmd_ralph."""

    def test_init_generates_prd(self, project_root: Path, capsys: pytest.CaptureFixture, write_task) -> None:
        tasks_dir = project_root / "rulebook" / "tasks"
        write_task(tasks_dir, "add-login", title="Add login")
        write_task(tasks_dir, "add-logout", title="Add logout", checklist=["- [x] 1.1 Done"])
        assert cmd_ralph(project_root, "init", _args()) == 0
        out = _out(capsys)
        assert "Ralph initialized!" in out
        assert "Stories: 2 total, 1 complete, 1 pending" in out
        prd = json.loads((project_root / "rulebook" / "ralph" / "prd.json").read_text())
        assert [s["sourceTaskId"] for s in prd["userStories"]] == ["add-login", "add-logout"]
        assert (project_root / "rulebook" / "scripts" / "ralph-run.sh").exists()

    def test_init_without_tasks_warns(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_ralph(project_root, "init", _args()) == 0
        assert "No tasks found" in _out(capsys)

    def test_init_keeps_progress(self, project_root: Path, write_task) -> None:
        write_task(project_root / "rulebook" / "tasks", "add-login")
        cmd_ralph(project_root, "init", _args())
        manager = RalphManager(project_root)
        manager.mark_story_complete("US-001")
        cmd_ralph(project_root, "init", _args())
        assert manager.load_prd().get_story("US-001").passes

    def test_status_before_init(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_ralph(project_root, "status", _args()) == 1
        assert "not initialized" in _out(capsys)

    def test_status_pause_resume(self, project_root: Path, capsys: pytest.CaptureFixture, write_task) -> None:
        write_task(project_root / "rulebook" / "tasks", "add-login", title="Add login")
        cmd_ralph(project_root, "init", _args())
        capsys.readouterr()
        assert cmd_ralph(project_root, "status", _args()) == 0
        out = _out(capsys)
        assert "State: idle" in out
        assert "Next story: US-001 - Add login" in out

        assert cmd_ralph(project_root, "pause", _args()) == 0
        cmd_ralph(project_root, "status", _args())
        assert "State: paused" in _out(capsys)
        assert cmd_ralph(project_root, "resume", _args()) == 0
        assert "Ralph resumed" in _out(capsys)

    def test_history(self, project_root: Path, capsys: pytest.CaptureFixture, make_result) -> None:
        assert cmd_ralph(project_root, "history", _args()) == 0
        assert "No iterations recorded yet" in _out(capsys)
        manager = RalphManager(project_root)
        manager.record_iteration(make_result(iteration=1))
        manager.record_iteration(make_result(iteration=2, status="failed", errors=["boom happened"]))
        assert cmd_ralph(project_root, "history", _args(limit=1)) == 0
        out = _out(capsys)
        assert "#2 US-001 failed" in out
        assert "#1 US-001" not in out
        assert "boom happened" in out
        assert "2 iterations, 1 successful, 1 failed (50% success)" in out

    @patch("rulebook.commands.ralph.is_git_repo", return_value=False)
    @patch("rulebook.commands.ralph.check_tool_available", return_value=(True, None))
    @patch("rulebook.commands.ralph.RalphLoop")
    def test_run(
        self,
        mock_loop: MagicMock,
        mock_check: MagicMock,
        mock_git: MagicMock,
        project_root: Path,
        capsys: pytest.CaptureFixture,
        default_global_config,
    ) -> None:
        default_global_config.tool_args = ["--model", "fast"]
        mock_loop.return_value.run.return_value = LoopSummary(
            iterations=2, completed=2, stop_reason="all stories complete"
        )
        assert cmd_ralph(project_root, "run", _args(tool="amp", max_iterations=4)) == 0
        assert mock_loop.call_args[1]["tool_args"] == ["--model", "fast"]
        assert mock_loop.return_value.run.call_args[1] == {
            "max_iterations": 4,
            "tool": "amp",
            "parallel": None,
            "non_interactive": True,
        }
        assert "Ralph finished: all stories complete" in _out(capsys)

    def test_run_unsupported_tool(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_ralph(project_root, "run", _args(tool="cursor")) == 1
        assert "Unsupported tool 'cursor'" in _out(capsys)

    @patch("rulebook.commands.ralph.check_tool_available", return_value=(False, "claude not found in PATH"))
    def test_run_missing_tool(self, mock_check: MagicMock, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_ralph(project_root, "run", _args()) == 1
        assert "claude not found in PATH" in _out(capsys)

    def test_run_disabled(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        ConfigManager(project_root).set("ralph.enabled", "false")
        assert cmd_ralph(project_root, "run", _args()) == 1
        assert "disabled" in _out(capsys)

    def test_watch_no_ui(self, project_root: Path) -> None:
        with patch("rulebook.tui.fallback.FallbackDashboard.run_loop") as mock_run:
            assert cmd_ralph(project_root, "watch", _args(no_ui=True)) == 0
        mock_run.assert_called_once()

    def test_unknown_action(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_ralph(project_root, "explode", _args()) == 1
        assert cmd_ralph(project_root, None, _args()) == 1


class TestConfig:
    """Tests for cmd_config."""

    def test_show(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_config(project_root) == 0
        out = _out(capsys)
        assert "Project Configuration (.rulebook):" in out
        assert '"projectName": "demo"' in out
        assert "Global Configuration:" in out

    def test_get_and_set(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_config(project_root, "ralph.maxIterations", "25") == 0
        assert "ralph.maxIterations = 25" in _out(capsys)
        assert cmd_config(project_root, "ralph.maxIterations") == 0
        assert _out(capsys).strip() == "25"

    def test_unknown_key(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_config(project_root, "nope.never") == 1
        assert "Unknown config key" in _out(capsys)

    def test_set_non_numeric_threshold(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        """Test a bad value prints an error instead of raising."""
        assert cmd_config(project_root, "coverageThreshold", "abc") == 1
        assert "Invalid value for coverageThreshold" in _out(capsys)
        assert ConfigManager(project_root).load().coverage_threshold == 95.0

    def test_set_non_numeric_iterations(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_config(project_root, "ralph.maxIterations", "abc") == 1
        assert "Invalid value for ralph.maxIterations" in _out(capsys)
        data = json.loads((project_root / ".rulebook").read_text())
        assert data["ralph"]["maxIterations"] == 10


class TestOverrideFile:
    """Tests for AGENTS.override.md through init, update and validate."""

    def test_init_creates_override(self, python_project: Path, capsys: pytest.CaptureFixture) -> None:
        cmd_init(python_project, yes=True)
        assert (python_project / "AGENTS.override.md").is_file()
        assert "AGENTS.override.md" in _out(capsys)
        assert "OVERRIDE:START" not in (python_project / "AGENTS.md").read_text()

    def test_update_folds_in_override(self, python_project: Path) -> None:
        cmd_init(python_project, yes=True)
        override = python_project / "AGENTS.override.md"
        override.write_text("<!-- OVERRIDE:START -->\n- Never edit generated files\n<!-- OVERRIDE:END -->\n")
        assert cmd_update(python_project) == 0
        assert cmd_init(python_project, yes=True) == 0
        assert "- Never edit generated files" in override.read_text()
        agents = (python_project / "AGENTS.md").read_text()
        assert agents.count("- Never edit generated files") == 1

    def test_validate_expects_override_block(self, python_project: Path, capsys: pytest.CaptureFixture) -> None:
        cmd_init(python_project, yes=True)
        (python_project / "AGENTS.override.md").write_text("- Never edit generated files\n")
        assert cmd_validate(python_project) == 1
        assert "missing blocks: OVERRIDE" in _out(capsys)
        cmd_update(python_project)
        assert cmd_validate(python_project) == 0


class TestWorkflows:
    """Tests for cmd_workflows."""

    def test_from_config(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_workflows(project_root) == 0
        out = _out(capsys)
        assert ".github/workflows/python-test.yml" in out
        assert ".github/workflows/codespell.yml" in out

    def test_detected_without_config(self, python_project: Path) -> None:
        assert cmd_workflows(python_project, minimal=True) == 0
        written = sorted(p.name for p in (python_project / ".github" / "workflows").iterdir())
        assert written == ["python-test.yml"]

    def test_rerun_writes_nothing(self, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        cmd_workflows(project_root)
        capsys.readouterr()
        assert cmd_workflows(project_root) == 0
        assert "nothing written" in _out(capsys)

    def test_no_languages(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_workflows(tmp_path) == 1
        assert "No languages detected" in _out(capsys)


class TestCheckCoverage:
    """Tests for cmd_check_coverage."""

    @patch("rulebook.commands.coverage.check_coverage")
    def test_threshold_from_config(self, mock_check: MagicMock, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        mock_check.return_value = CoverageResult(
            threshold=95.0, percentage=96.5, command=["pytest", "--cov"], details={"lines": 96.5}
        )
        assert cmd_check_coverage(project_root) == 0
        assert mock_check.call_args[0][1] == 95.0
        out = _out(capsys)
        assert "Actual: ✓ 96.50%" in out
        assert "Lines: 96.50%" in out

    @patch("rulebook.commands.coverage.check_coverage")
    def test_below_threshold(self, mock_check: MagicMock, project_root: Path, capsys: pytest.CaptureFixture) -> None:
        mock_check.return_value = CoverageResult(threshold=90.0, percentage=80.0, command=["go", "test"])
        assert cmd_check_coverage(project_root, threshold=90.0) == 1
        assert mock_check.call_args[0][1] == 90.0
        assert "80.00% is below threshold 90%" in _out(capsys)

    @patch("rulebook.commands.coverage.check_coverage")
    def test_no_figure(self, mock_check: MagicMock, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        mock_check.return_value = CoverageResult(threshold=95.0, error="go not found on PATH")
        assert cmd_check_coverage(tmp_path) == 1
        assert "Error: go not found on PATH" in _out(capsys)
