"""Unit tests for rulebook.models module."""

import json

from rulebook.models import (
    PRD,
    IterationMetadata,
    IterationResult,
    LockInfo,
    LoopState,
    PlanCheckpointConfig,
    QualityChecks,
    UserStory,
)


class TestUserStory:
    """Tests for UserStory serialization."""

    def test_to_dict_uses_camel_case(self, sample_story: UserStory) -> None:
        """Test JSON keys match the prd.json layout."""
        d = sample_story.to_dict()
        assert d["acceptanceCriteria"] == sample_story.acceptance_criteria
        assert d["sourceTaskId"] == "add-login"
        assert "acceptance_criteria" not in d

    def test_source_task_id_omitted_when_unset(self) -> None:
        """Test sourceTaskId is only written when known."""
        story = UserStory(id="GH-42", title="From an issue")
        assert "sourceTaskId" not in story.to_dict()

    def test_from_dict_defaults(self) -> None:
        """Test missing keys take defaults."""
        story = UserStory.from_dict({"id": "US-009", "title": "Minimal"})
        assert story.acceptance_criteria == []
        assert story.priority == 0
        assert story.passes is False
        assert story.notes == ""
        assert story.source_task_id is None

    def test_from_dict_ignores_unknown_keys(self) -> None:
        """Test unknown keys do not break loading."""
        story = UserStory.from_dict({"id": "US-001", "title": "x", "estimate": 3})
        assert story.id == "US-001"

    def test_round_trip(self, sample_story: UserStory) -> None:
        """Test to_dict/from_dict round trip."""
        assert UserStory.from_dict(sample_story.to_dict()) == sample_story


class TestPRD:
    """Tests for PRD backlog operations."""

    def test_next_story_lowest_priority_pending(self, sample_prd: PRD) -> None:
        """Test the next story skips passing ones and picks lowest priority."""
        assert sample_prd.next_story().id == "US-001"

    def test_next_story_ties_keep_file_order(self) -> None:
        """Test equal priorities resolve in file order."""
        prd = PRD(
            project="p",
            user_stories=[
                UserStory(id="B", title="b", priority=1),
                UserStory(id="A", title="a", priority=1),
            ],
        )
        assert prd.next_story().id == "B"

    def test_next_story_none_when_all_pass(self) -> None:
        """Test None once every story passes."""
        prd = PRD(project="p", user_stories=[UserStory(id="A", title="a", passes=True)])
        assert prd.next_story() is None

    def test_mark_complete(self, sample_prd: PRD) -> None:
        """Test marking a story complete."""
        assert sample_prd.mark_complete("US-001") is True
        assert sample_prd.get_story("US-001").passes is True
        assert sample_prd.next_story().id == "US-002"

    def test_mark_complete_unknown_id(self, sample_prd: PRD) -> None:
        """Test unknown id returns False."""
        assert sample_prd.mark_complete("US-999") is False

    def test_stats(self, sample_prd: PRD) -> None:
        """Test completed/pending/total counts."""
        assert sample_prd.stats() == {"completed": 1, "pending": 2, "total": 3}

    def test_pending_stories_sorted(self) -> None:
        """Test pending stories come back in priority order."""
        prd = PRD(
            project="p",
            user_stories=[
                UserStory(id="C", title="c", priority=3),
                UserStory(id="A", title="a", priority=1),
                UserStory(id="B", title="b", priority=2, passes=True),
            ],
        )
        assert [s.id for s in prd.pending_stories()] == ["A", "C"]

    def test_to_json_is_pretty_with_newline(self, sample_prd: PRD) -> None:
        """Test JSON output is indented and newline terminated."""
        text = sample_prd.to_json()
        assert text.endswith("\n")
        assert '\n  "project": "demo"' in text
        assert json.loads(text)["branchName"] == "ralph/demo"

    def test_from_dict_round_trip(self, sample_prd: PRD) -> None:
        """Test PRD round trip."""
        assert PRD.from_dict(sample_prd.to_dict()) == sample_prd


class TestQualityChecks:
    """Tests for QualityChecks."""

    def test_passed_count(self) -> None:
        """Test counting passed gates."""
        assert QualityChecks(True, False, True, False).passed_count() == 2
        assert QualityChecks(True, True, True, True).all_passed() is True

    def test_coverage_percent_omitted_when_unknown(self) -> None:
        """Test coverage_percent is left out of JSON when None."""
        assert "coverage_percent" not in QualityChecks().to_dict()
        assert QualityChecks(coverage_percent=88.5).to_dict()["coverage_percent"] == 88.5


class TestIterationResult:
    """Tests for IterationResult serialization."""

    def test_metadata_nested(self, make_result) -> None:
        """Test context loss, completion and exit code are nested under metadata."""
        result = make_result()
        result.context_loss_count = 2
        result.parsed_completion = True
        result.exit_code = 1
        d = result.to_dict()
        assert d["metadata"] == {"context_loss_count": 2, "parsed_completion": True, "exit_code": 1}
        assert "context_loss_count" not in d

    def test_git_commit_only_when_set(self, make_result) -> None:
        """Test git_commit key is optional."""
        result = make_result()
        assert "git_commit" not in result.to_dict()
        result.git_commit = "abc1234"
        assert result.to_dict()["git_commit"] == "abc1234"

    def test_round_trip(self, make_result) -> None:
        """Test IterationResult round trip."""
        result = make_result(status="partial", errors=["Error: boom"])
        assert IterationResult.from_dict(result.to_dict()) == result


class TestIterationMetadata:
    """Tests for IterationMetadata."""

    def test_from_result(self, make_result) -> None:
        """Test building the history record from a result."""
        result = make_result(iteration=4, learnings=["Learning: use fixtures"])
        meta = IterationMetadata.from_result(result, started_at="2026-01-02T03:00:00Z")
        assert meta.iteration == 4
        assert meta.started_at == "2026-01-02T03:00:00Z"
        assert meta.completed_at == result.timestamp
        assert meta.duration_ms == result.execution_time_ms
        assert meta.learnings == ["Learning: use fixtures"]

    def test_round_trip(self, make_result) -> None:
        """Test IterationMetadata round trip."""
        meta = IterationMetadata.from_result(make_result(), started_at="t0")
        assert IterationMetadata.from_dict(meta.to_dict()) == meta


class TestLoopState:
    """Tests for LoopState."""

    def test_defaults_from_empty_dict(self) -> None:
        """Test empty state file content loads defaults."""
        state = LoopState.from_dict({})
        assert state.max_iterations == 10
        assert state.tool == "claude"
        assert state.paused is False

    def test_round_trip(self) -> None:
        """Test LoopState round trip."""
        state = LoopState(current_iteration=3, total_iterations=7, paused=True, paused_at="t")
        assert LoopState.from_dict(state.to_dict()) == state


class TestLockInfo:
    """Tests for LockInfo."""

    def test_optional_fields_omitted(self) -> None:
        """Test iteration and currentTask are optional in JSON."""
        d = LockInfo(pid=10, started_at="t", tool="amp").to_dict()
        assert d == {"pid": 10, "startedAt": "t", "tool": "amp"}

    def test_round_trip(self) -> None:
        """Test LockInfo round trip with progress."""
        lock = LockInfo(pid=10, started_at="t", tool="amp", iteration=2, current_task="US-003")
        assert LockInfo.from_dict(lock.to_dict()) == lock


class TestPlanCheckpointConfig:
    """Tests for PlanCheckpointConfig."""

    def test_defaults(self) -> None:
        """Test the checkpoint is off by default."""
        cfg = PlanCheckpointConfig.from_dict({})
        assert cfg.enabled is False
        assert cfg.require_approval_for_stories == "all"

    def test_invalid_mode_falls_back_to_all(self) -> None:
        """Test an unknown approval mode is replaced by 'all'."""
        cfg = PlanCheckpointConfig.from_dict({"requireApprovalForStories": "sometimes"})
        assert cfg.require_approval_for_stories == "all"

    def test_camel_case_keys(self) -> None:
        """Test JSON keys."""
        cfg = PlanCheckpointConfig(enabled=True, auto_approve_after_seconds=30)
        assert cfg.to_dict()["autoApproveAfterSeconds"] == 30
