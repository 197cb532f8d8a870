"""Pytest fixtures for rulebook tests."""

import json
from pathlib import Path
from typing import Callable, Generator, List, Optional

import pytest

from rulebook import config as config_module
from rulebook.config import ConfigManager, GlobalConfig, ProjectConfig
from rulebook.models import PRD, IterationResult, QualityChecks, UserStory


@pytest.fixture(autouse=True)
def default_global_config(monkeypatch: pytest.MonkeyPatch) -> Generator[GlobalConfig, None, None]:
    """Keep the user's ~/.config/rulebook/config.toml out of every test."""
    gcfg = GlobalConfig()
    monkeypatch.setattr(config_module, "_global_config", gcfg)
    monkeypatch.delenv("RULEBOOK_PROFILE", raising=False)
    yield gcfg


@pytest.fixture
def sample_story() -> UserStory:
    """Create a sample pending story."""
    return UserStory(
        id="US-001",
        title="Add login endpoint",
        description="POST /login returns a session token",
        acceptance_criteria=["Returns 200 with a token", "Returns 401 on bad password"],
        priority=1,
        source_task_id="add-login",
    )


@pytest.fixture
def sample_prd(sample_story: UserStory) -> PRD:
    """Create a PRD with one done and two pending stories."""
    return PRD(
        project="demo",
        branch_name="ralph/demo",
        description="Demo project",
        user_stories=[
            UserStory(id="US-000", title="Scaffold", priority=0, passes=True),
            sample_story,
            UserStory(id="US-002", title="Add logout endpoint", priority=2),
        ],
    )


@pytest.fixture
def make_result() -> Callable[..., IterationResult]:
    """Factory for IterationResult objects."""

    def _make(
        iteration: int = 1,
        status: str = "success",
        task_id: str = "US-001",
        checks: Optional[QualityChecks] = None,
        errors: Optional[List[str]] = None,
        learnings: Optional[List[str]] = None,
        duration_ms: int = 1500,
    ) -> IterationResult:
        if checks is None:
            passed = status == "success"
            checks = QualityChecks(passed, passed, passed, passed, 97.0 if passed else None)
        return IterationResult(
            iteration=iteration,
            timestamp="2026-01-02T03:04:05Z",
            task_id=task_id,
            task_title=f"Story {task_id}",
            status=status,
            ai_tool="claude",
            execution_time_ms=duration_ms,
            quality_checks=checks,
            output_summary=f"[{status.upper()}] did things",
            errors=list(errors or []),
            learnings=list(learnings or []),
        )

    return _make


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A project directory with a saved default .rulebook config."""
    ConfigManager(tmp_path).initialize(languages=["python"], project_name="demo")
    return tmp_path


@pytest.fixture
def project_config(project_root: Path) -> ProjectConfig:
    return ConfigManager(project_root).load()


@pytest.fixture
def write_task() -> Callable[..., Path]:
    """Factory that writes a task directory with proposal.md and tasks.md."""

    def _write(
        tasks_dir: Path,
        task_id: str,
        title: str = "Do the thing",
        why: str = "Because the thing is needed by every user of the system.",
        what: str = "- Add the thing\n- Test the thing",
        checklist: Optional[List[str]] = None,
    ) -> Path:
        task_dir = tasks_dir / task_id
        (task_dir / "specs").mkdir(parents=True)
        (task_dir / "proposal.md").write_text(
            f"# Proposal: {title}\n\n## Why\n{why}\n\n## What Changes\n{what}\n"
        )
        items = checklist if checklist is not None else ["- [ ] 1.1 Implement", "- [ ] 1.2 Test"]
        (task_dir / "tasks.md").write_text("## 1. Implementation\n" + "\n".join(items) + "\n")
        (task_dir / ".metadata.json").write_text(
            json.dumps({"status": "pending", "createdAt": "", "updatedAt": ""})
        )
        return task_dir

    return _write
