"""End-to-end tests for the task and ralph workflows.

Creates tasks through the CLI, turns them into a PRD and drives the loop
with a stand-in agent script placed first on PATH.
"""

import json
import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Dict, Generator, Optional

import pytest

from rulebook.utils import strip_ansi


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the user's global config out of the CLI subprocess."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("RULEBOOK_PROFILE", raising=False)


@pytest.fixture
def temp_git_repo() -> Generator[Path, None, None]:
    """Create a temporary git repository for testing CLI commands."""
    with tempfile.TemporaryDirectory() as tmpdir:
        repo_path = Path(tmpdir)
        subprocess.run(["git", "init"], cwd=repo_path, capture_output=True, check=True)
        subprocess.run(
            ["git", "config", "user.email", "test@test.com"],
            cwd=repo_path,
            capture_output=True,
            check=True,
        )
        subprocess.run(
            ["git", "config", "user.name", "Test User"],
            cwd=repo_path,
            capture_output=True,
            check=True,
        )
        yield repo_path


@pytest.fixture
def initialized_repo(temp_git_repo: Path) -> Path:
    result = run_rulebook("init", "--yes", cwd=temp_git_repo)
    assert result.returncode == 0, result.stdout + result.stderr
    return temp_git_repo


REPO_ROOT = Path(__file__).parent.parent.parent.parent

VALID_PROPOSAL = """# Proposal: Add user auth

## Why
Users need to log in before they can manage their own projects.

## What Changes
- Add a login endpoint
"""

AGENT_SCRIPT = """#!/bin/sh
if [ "$1" = "--version" ]; then
  echo "claude 1.0.0"
  exit 0
fi
cat > /dev/null
cat <<'OUT'
Implemented the story.
$ npx tsc --noEmit
tsc: 0 errors
$ npm run lint
0 problems (0 errors, 0 warnings)
$ npx vitest run --coverage
Tests  12 passed (12)
All files |   97.0 |   90.0 |   95.0 |   97.0 |
Learning: Keep handlers thin and test the service layer
<promise>COMPLETE</promise>
OUT
"""


def run_rulebook(
    *args: str, cwd: Path | None = None, extra_env: Optional[Dict[str, str]] = None
) -> subprocess.CompletedProcess:
    """Run rulebook CLI command and return result."""
    cmd = [sys.executable, "-m", "rulebook"] + list(args)
    env = os.environ.copy()
    env["PYTHONPATH"] = str(REPO_ROOT) + os.pathsep + env.get("PYTHONPATH", "")
    if extra_env:
        env.update(extra_env)
    return subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=30,
        env=env,
    )


def write_valid_task(repo: Path, task_id: str) -> Path:
    task_dir = repo / "rulebook" / "tasks" / task_id
    (task_dir / "proposal.md").write_text(VALID_PROPOSAL)
    spec_dir = task_dir / "specs" / "auth"
    spec_dir.mkdir(parents=True, exist_ok=True)
    (spec_dir / "spec.md").write_text(
        "## ADDED Requirements\n\n"
        "### Requirement: Login\n"
        "The system SHALL authenticate users.\n\n"
        "#### Scenario: Valid credentials\n"
        "Given a user When they log in Then a session is created\n"
    )
    return task_dir


class TestTaskWorkflow:
    """Tests for rulebook task."""

    def test_create_and_list(self, initialized_repo: Path) -> None:
        result = run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        assert result.returncode == 0
        assert "Task created:" in strip_ansi(result.stdout)
        task_dir = initialized_repo / "rulebook" / "tasks" / "add-auth"
        assert (task_dir / "proposal.md").is_file()
        assert (task_dir / "tasks.md").is_file()

        result = run_rulebook("task", "list", cwd=initialized_repo)
        assert "add-auth" in strip_ansi(result.stdout)

    def test_create_duplicate_fails(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        result = run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        assert result.returncode == 1
        assert "already exists" in strip_ansi(result.stdout)

    def test_create_rejects_bad_id(self, initialized_repo: Path) -> None:
        result = run_rulebook("task", "create", "Add_Auth", cwd=initialized_repo)
        assert result.returncode == 1
        assert "kebab-case" in strip_ansi(result.stdout)

    def test_template_warns_about_specs(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        result = run_rulebook("task", "validate", "add-auth", cwd=initialized_repo)
        assert result.returncode == 0
        assert "No spec files found" in strip_ansi(result.stdout)

    def test_short_why_fails_validation(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        proposal = initialized_repo / "rulebook" / "tasks" / "add-auth" / "proposal.md"
        proposal.write_text("# Proposal: Auth\n\n## Why\nNeeded.\n\n## What Changes\n- Login\n")

        result = run_rulebook("task", "validate", "add-auth", cwd=initialized_repo)
        assert result.returncode == 1
        assert "at least 20 characters" in strip_ansi(result.stdout)

    def test_filled_task_validates(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        write_valid_task(initialized_repo, "add-auth")

        result = run_rulebook("task", "validate", "add-auth", cwd=initialized_repo)
        assert result.returncode == 0, result.stdout
        assert "Task add-auth is valid" in strip_ansi(result.stdout)

    def test_status_update(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        result = run_rulebook("task", "status", "add-auth", "in-progress", cwd=initialized_repo)
        assert result.returncode == 0
        meta = json.loads(
            (initialized_repo / "rulebook" / "tasks" / "add-auth" / ".metadata.json").read_text()
        )
        assert meta["status"] == "in-progress"

    def test_status_rejects_unknown(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        result = run_rulebook("task", "status", "add-auth", "done", cwd=initialized_repo)
        assert result.returncode == 1
        assert "Invalid status" in strip_ansi(result.stdout)

    def test_archive_force(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        result = run_rulebook("task", "archive", "add-auth", "--force", cwd=initialized_repo)
        assert result.returncode == 0
        assert not (initialized_repo / "rulebook" / "tasks" / "add-auth").exists()

        result = run_rulebook("task", "list", "--archived", cwd=initialized_repo)
        assert "add-auth" in strip_ansi(result.stdout)

    def test_archive_invalid_without_force(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        (initialized_repo / "rulebook" / "tasks" / "add-auth" / "tasks.md").write_text("Nothing yet\n")
        result = run_rulebook("task", "archive", "add-auth", cwd=initialized_repo)
        assert result.returncode == 1
        assert "validation failed" in strip_ansi(result.stdout)
        assert (initialized_repo / "rulebook" / "tasks" / "add-auth").is_dir()


class TestRalphWorkflow:
    """Tests for rulebook ralph."""

    def test_status_before_init(self, initialized_repo: Path) -> None:
        result = run_rulebook("ralph", "status", cwd=initialized_repo)
        assert result.returncode == 1
        assert "Ralph not initialized" in strip_ansi(result.stdout)

    def test_init_generates_prd_and_scripts(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        run_rulebook("task", "create", "add-billing", cwd=initialized_repo)

        result = run_rulebook("ralph", "init", cwd=initialized_repo)
        assert result.returncode == 0
        assert "2 total" in strip_ansi(result.stdout)

        ralph_dir = initialized_repo / "rulebook" / "ralph"
        prd = json.loads((ralph_dir / "prd.json").read_text())
        assert [s["id"] for s in prd["userStories"]] == ["US-001", "US-002"]
        assert prd["userStories"][0]["sourceTaskId"] == "add-auth"
        assert (ralph_dir / "state.json").is_file()
        assert (initialized_repo / "rulebook" / "scripts" / "ralph-run.sh").is_file()

    def test_pause_resume_status(self, initialized_repo: Path) -> None:
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        run_rulebook("ralph", "init", cwd=initialized_repo)

        result = run_rulebook("ralph", "pause", cwd=initialized_repo)
        assert result.returncode == 0
        result = run_rulebook("ralph", "status", cwd=initialized_repo)
        assert "paused" in strip_ansi(result.stdout)
        assert "Next story: US-001" in strip_ansi(result.stdout)

        run_rulebook("ralph", "resume", cwd=initialized_repo)
        result = run_rulebook("ralph", "status", cwd=initialized_repo)
        assert "State: idle" in strip_ansi(result.stdout)

    def test_history_empty(self, initialized_repo: Path) -> None:
        run_rulebook("ralph", "init", cwd=initialized_repo)
        result = run_rulebook("ralph", "history", cwd=initialized_repo)
        assert result.returncode == 0
        assert "No iterations recorded yet" in strip_ansi(result.stdout)

    def test_run_without_tool(self, initialized_repo: Path, tmp_path: Path) -> None:
        """Test run fails cleanly when the agent CLI is not on PATH."""
        run_rulebook("ralph", "init", cwd=initialized_repo)
        empty_bin = tmp_path / "empty-bin"
        empty_bin.mkdir()
        result = run_rulebook(
            "ralph", "run", "--yes", cwd=initialized_repo, extra_env={"PATH": str(empty_bin)}
        )
        assert result.returncode == 1
        assert "claude not found in PATH" in strip_ansi(result.stdout)

    def test_run_with_agent_completes_story(self, initialized_repo: Path, tmp_path: Path) -> None:
        """Test a full run against a stand-in agent that reports passing gates."""
        run_rulebook("task", "create", "add-auth", cwd=initialized_repo)
        write_valid_task(initialized_repo, "add-auth")
        run_rulebook("ralph", "init", cwd=initialized_repo)

        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        agent = bin_dir / "claude"
        agent.write_text(AGENT_SCRIPT)
        agent.chmod(0o755)
        path = str(bin_dir) + os.pathsep + os.environ.get("PATH", "")

        result = run_rulebook(
            "ralph", "run", "--yes", "--max-iterations", "3",
            cwd=initialized_repo,
            extra_env={"PATH": path},
        )
        output = strip_ansi(result.stdout)
        assert result.returncode == 0, output + result.stderr
        assert "Ralph finished:" in output
        assert "1 completed" in output

        ralph_dir = initialized_repo / "rulebook" / "ralph"
        prd = json.loads((ralph_dir / "prd.json").read_text())
        assert prd["userStories"][0]["passes"] is True
        assert "Keep handlers thin" in (ralph_dir / "progress.txt").read_text()
        assert not (ralph_dir / "ralph.lock").exists()

        result = run_rulebook("ralph", "history", cwd=initialized_repo)
        history = strip_ansi(result.stdout)
        assert "#1 US-001 success" in history
        assert "1 iterations, 1 successful" in history


class TestConfigWorkflow:
    """Tests for rulebook config against an initialized project."""

    def test_get_nested_section(self, initialized_repo: Path) -> None:
        result = run_rulebook("config", "ralph", cwd=initialized_repo)
        assert result.returncode == 0
        assert json.loads(result.stdout)["tool"] == "claude"

    def test_set_boolean_disables_ralph(self, initialized_repo: Path) -> None:
        run_rulebook("config", "ralph.enabled", "false", cwd=initialized_repo)
        run_rulebook("ralph", "init", cwd=initialized_repo)
        result = run_rulebook("ralph", "run", "--yes", cwd=initialized_repo)
        assert result.returncode == 1
        assert "Ralph is disabled" in strip_ansi(result.stdout)

    def test_unknown_key(self, initialized_repo: Path) -> None:
        result = run_rulebook("config", "ralph.colour", "blue", cwd=initialized_repo)
        assert result.returncode == 1
        assert "Unknown config key" in strip_ansi(result.stdout)
