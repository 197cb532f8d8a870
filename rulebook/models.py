"""Data models for the PRD backlog and the Ralph iteration records."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class UserStory:
    """A user story in the PRD backlog.

    Stories are the units of work Ralph hands to the AI tool, one per
    iteration. A story is done once ``passes`` is True.

    Attributes:
        id: Story identifier (e.g., 'US-001', 'GH-42').
        title: Short title.
        description: What to build.
        acceptance_criteria: Conditions the AI tool must satisfy.
        priority: Lower numbers are picked first.
        passes: True once every quality gate passed for this story.
        notes: Free-form notes; failures and rejected plans are appended here.
        source_task_id: Task directory this story was generated from.
    """

    id: str
    title: str
    description: str = ""
    acceptance_criteria: List[str] = field(default_factory=list)
    priority: int = 0
    passes: bool = False
    notes: str = ""
    source_task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "priority": self.priority,
            "passes": self.passes,
            "notes": self.notes,
        }
        if self.source_task_id:
            d["sourceTaskId"] = self.source_task_id
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "UserStory":
        return cls(
            id=d["id"],
            title=d.get("title", ""),
            description=d.get("description", ""),
            acceptance_criteria=list(d.get("acceptanceCriteria") or []),
            priority=int(d.get("priority", 0)),
            passes=bool(d.get("passes", False)),
            notes=d.get("notes") or "",
            source_task_id=d.get("sourceTaskId"),
        )


@dataclass
class PRD:
    """The product requirements document Ralph works through.

    Attributes:
        project: Project name.
        branch_name: Branch the loop commits to (e.g., 'ralph/my-project').
        description: One-paragraph project description.
        user_stories: The backlog, in file order.
    """

    project: str
    branch_name: str = ""
    description: str = ""
    user_stories: List[UserStory] = field(default_factory=list)

    def next_story(self) -> Optional[UserStory]:
        """Return the pending story with the lowest priority.

        Ties keep file order. Returns None when every story passes.
        """
        pending = [s for s in self.user_stories if not s.passes]
        if not pending:
            return None
        return min(pending, key=lambda s: s.priority)

    def get_story(self, story_id: str) -> Optional[UserStory]:
        for story in self.user_stories:
            if story.id == story_id:
                return story
        return None

    def mark_complete(self, story_id: str) -> bool:
        """Set ``passes`` on a story.

        Returns:
            False if no story has that id.
        """
        story = self.get_story(story_id)
        if story is None:
            return False
        story.passes = True
        return True

    def pending_stories(self) -> List[UserStory]:
        return sorted(
            (s for s in self.user_stories if not s.passes), key=lambda s: s.priority
        )

    def stats(self) -> Dict[str, int]:
        completed = sum(1 for s in self.user_stories if s.passes)
        total = len(self.user_stories)
        return {"completed": completed, "pending": total - completed, "total": total}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": self.project,
            "branchName": self.branch_name,
            "description": self.description,
            "userStories": [s.to_dict() for s in self.user_stories],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PRD":
        return cls(
            project=d.get("project", ""),
            branch_name=d.get("branchName", ""),
            description=d.get("description", ""),
            user_stories=[UserStory.from_dict(s) for s in d.get("userStories") or []],
        )


@dataclass
class QualityChecks:
    """Pass/fail state of the four quality gates for one iteration."""

    type_check: bool = False
    lint: bool = False
    tests: bool = False
    coverage_met: bool = False
    coverage_percent: Optional[float] = None

    def passed_count(self) -> int:
        return sum([self.type_check, self.lint, self.tests, self.coverage_met])

    def all_passed(self) -> bool:
        return self.passed_count() == 4

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type_check": self.type_check,
            "lint": self.lint,
            "tests": self.tests,
            "coverage_met": self.coverage_met,
        }
        if self.coverage_percent is not None:
            d["coverage_percent"] = self.coverage_percent
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "QualityChecks":
        return cls(
            type_check=bool(d.get("type_check", False)),
            lint=bool(d.get("lint", False)),
            tests=bool(d.get("tests", False)),
            coverage_met=bool(d.get("coverage_met", False)),
            coverage_percent=d.get("coverage_percent"),
        )


STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"


@dataclass
class IterationResult:
    """Outcome of one Ralph iteration, as classified from the tool output.

    Attributes:
        iteration: 1-based iteration number.
        timestamp: ISO-8601 completion time.
        task_id: Story id worked on.
        task_title: Story title.
        status: 'success', 'partial' or 'failed'.
        ai_tool: Tool that ran ('claude', 'amp', 'gemini').
        execution_time_ms: Wall time of the tool run.
        quality_checks: Gate results.
        output_summary: Short human summary of the output.
        git_commit: Commit sha the tool reported, if any.
        errors: Up to three error fragments.
        learnings: Up to five learning lines.
        context_loss_count: Context-loss phrases seen in the output.
        parsed_completion: True when the output claimed completion.
        exit_code: Tool exit code.
    """

    iteration: int
    timestamp: str
    task_id: str
    task_title: str
    status: str
    ai_tool: str
    execution_time_ms: int = 0
    quality_checks: QualityChecks = field(default_factory=QualityChecks)
    output_summary: str = ""
    git_commit: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    learnings: List[str] = field(default_factory=list)
    context_loss_count: int = 0
    parsed_completion: bool = False
    exit_code: int = 0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "iteration": self.iteration,
            "timestamp": self.timestamp,
            "task_id": self.task_id,
            "task_title": self.task_title,
            "status": self.status,
            "ai_tool": self.ai_tool,
            "execution_time_ms": self.execution_time_ms,
            "quality_checks": self.quality_checks.to_dict(),
            "output_summary": self.output_summary,
            "errors": list(self.errors),
            "learnings": list(self.learnings),
            "metadata": {
                "context_loss_count": self.context_loss_count,
                "parsed_completion": self.parsed_completion,
                "exit_code": self.exit_code,
            },
        }
        if self.git_commit:
            d["git_commit"] = self.git_commit
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "IterationResult":
        meta = d.get("metadata") or {}
        return cls(
            iteration=int(d.get("iteration", 0)),
            timestamp=d.get("timestamp", ""),
            task_id=d.get("task_id", ""),
            task_title=d.get("task_title", ""),
            status=d.get("status", STATUS_FAILED),
            ai_tool=d.get("ai_tool", ""),
            execution_time_ms=int(d.get("execution_time_ms", 0)),
            quality_checks=QualityChecks.from_dict(d.get("quality_checks") or {}),
            output_summary=d.get("output_summary", ""),
            git_commit=d.get("git_commit"),
            errors=list(d.get("errors") or []),
            learnings=list(d.get("learnings") or []),
            context_loss_count=int(meta.get("context_loss_count", 0)),
            parsed_completion=bool(meta.get("parsed_completion", False)),
            exit_code=int(meta.get("exit_code", 0)),
        )


@dataclass
class IterationMetadata:
    """Per-iteration record stored as ``history/iteration-N.json``."""

    iteration: int
    started_at: str
    completed_at: str
    task_id: str
    task_title: str
    duration_ms: int
    status: str
    quality_checks: QualityChecks = field(default_factory=QualityChecks)
    output_summary: str = ""
    git_commit: Optional[str] = None
    learnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: IterationResult, started_at: str) -> "IterationMetadata":
        return cls(
            iteration=result.iteration,
            started_at=started_at,
            completed_at=result.timestamp,
            task_id=result.task_id,
            task_title=result.task_title,
            duration_ms=result.execution_time_ms,
            status=result.status,
            quality_checks=result.quality_checks,
            output_summary=result.output_summary,
            git_commit=result.git_commit,
            learnings=list(result.learnings),
            errors=list(result.errors),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "iteration": self.iteration,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "task_id": self.task_id,
            "task_title": self.task_title,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "quality_checks": self.quality_checks.to_dict(),
            "output_summary": self.output_summary,
            "learnings": list(self.learnings),
            "errors": list(self.errors),
        }
        if self.git_commit:
            d["git_commit"] = self.git_commit
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "IterationMetadata":
        return cls(
            iteration=int(d["iteration"]),
            started_at=d.get("started_at", ""),
            completed_at=d.get("completed_at", ""),
            task_id=d.get("task_id", ""),
            task_title=d.get("task_title", ""),
            duration_ms=int(d.get("duration_ms", 0)),
            status=d.get("status", STATUS_FAILED),
            quality_checks=QualityChecks.from_dict(d.get("quality_checks") or {}),
            output_summary=d.get("output_summary", ""),
            git_commit=d.get("git_commit"),
            learnings=list(d.get("learnings") or []),
            errors=list(d.get("errors") or []),
        )


@dataclass
class LoopState:
    """Persistent state of the Ralph loop (``state.json``)."""

    enabled: bool = True
    current_iteration: int = 0
    max_iterations: int = 10
    total_iterations: int = 0
    completed_tasks: int = 0
    total_tasks: int = 0
    paused: bool = False
    paused_at: Optional[str] = None
    started_at: str = ""
    last_updated: str = ""
    current_task_id: Optional[str] = None
    tool: str = "claude"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "current_iteration": self.current_iteration,
            "max_iterations": self.max_iterations,
            "total_iterations": self.total_iterations,
            "completed_tasks": self.completed_tasks,
            "total_tasks": self.total_tasks,
            "paused": self.paused,
            "paused_at": self.paused_at,
            "started_at": self.started_at,
            "last_updated": self.last_updated,
            "current_task_id": self.current_task_id,
            "tool": self.tool,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LoopState":
        defaults = cls()
        return cls(
            enabled=bool(d.get("enabled", defaults.enabled)),
            current_iteration=int(d.get("current_iteration", 0)),
            max_iterations=int(d.get("max_iterations", defaults.max_iterations)),
            total_iterations=int(d.get("total_iterations", 0)),
            completed_tasks=int(d.get("completed_tasks", 0)),
            total_tasks=int(d.get("total_tasks", 0)),
            paused=bool(d.get("paused", False)),
            paused_at=d.get("paused_at"),
            started_at=d.get("started_at", ""),
            last_updated=d.get("last_updated", ""),
            current_task_id=d.get("current_task_id"),
            tool=d.get("tool", defaults.tool),
        )


@dataclass
class LockInfo:
    """Contents of ``ralph.lock``."""

    pid: int
    started_at: str
    tool: str
    iteration: Optional[int] = None
    current_task: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "pid": self.pid,
            "startedAt": self.started_at,
            "tool": self.tool,
        }
        if self.iteration is not None:
            d["iteration"] = self.iteration
        if self.current_task:
            d["currentTask"] = self.current_task
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LockInfo":
        return cls(
            pid=int(d["pid"]),
            started_at=d.get("startedAt", ""),
            tool=d.get("tool", ""),
            iteration=d.get("iteration"),
            current_task=d.get("currentTask"),
        )


APPROVAL_MODES = ("all", "failed", "none")


@dataclass
class PlanCheckpointConfig:
    """Settings for the plan approval step before each iteration.

    Attributes:
        enabled: Whether to generate and show a plan at all.
        auto_approve_after_seconds: Approve automatically after this many
            seconds without input (0 waits forever).
        require_approval_for_stories: 'all', 'failed' (only stories not yet
            passing) or 'none'.
    """

    enabled: bool = False
    auto_approve_after_seconds: int = 0
    require_approval_for_stories: str = "all"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "autoApproveAfterSeconds": self.auto_approve_after_seconds,
            "requireApprovalForStories": self.require_approval_for_stories,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PlanCheckpointConfig":
        mode = d.get("requireApprovalForStories", "all")
        if mode not in APPROVAL_MODES:
            mode = "all"
        return cls(
            enabled=bool(d.get("enabled", False)),
            auto_approve_after_seconds=int(d.get("autoApproveAfterSeconds", 0)),
            require_approval_for_stories=mode,
        )
