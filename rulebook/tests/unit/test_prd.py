"""Unit tests for rulebook.prd module."""

from pathlib import Path

import pytest

from rulebook.errors import PRDError
from rulebook.models import PRD, UserStory
from rulebook.prd import (
    PRDGenerator,
    extract_description,
    extract_title,
    load_prd,
    merge_with_existing,
    parse_checklist,
    save_prd,
)


class TestLoadSave:
    """Tests for load_prd and save_prd."""

    def test_missing_file_returns_none(self, tmp_path: Path) -> None:
        """Test a missing PRD is None, not an error."""
        assert load_prd(tmp_path / "prd.json") is None

    def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        """Test invalid JSON raises PRDError."""
        path = tmp_path / "prd.json"
        path.write_text("{oops")
        with pytest.raises(PRDError):
            load_prd(path)

    def test_story_without_id_raises(self, tmp_path: Path) -> None:
        """Test a structurally broken PRD raises PRDError."""
        path = tmp_path / "prd.json"
        path.write_text('{"project": "p", "userStories": [{"title": "no id"}]}')
        with pytest.raises(PRDError):
            load_prd(path)

    def test_save_creates_dirs_and_round_trips(self, tmp_path: Path, sample_prd: PRD) -> None:
        """Test save_prd writes JSON that load_prd reads back."""
        path = tmp_path / "rulebook" / "ralph" / "prd.json"
        save_prd(sample_prd, path)
        assert path.read_text().endswith("\n")
        assert load_prd(path) == sample_prd


class TestParseChecklist:
    """Tests for parse_checklist."""

    def test_checked_and_unchecked(self) -> None:
        """Test both states are parsed and numbering is removed."""
        content = "## 1. Impl\n- [ ] 1.1 Write code\n- [x] 1.2 Write tests\n* [X] Ship it\n"
        assert parse_checklist(content) == [
            (False, "Write code"),
            (True, "Write tests"),
            (True, "Ship it"),
        ]

    def test_ignores_other_lines(self) -> None:
        """Test plain bullets and headings are skipped."""
        assert parse_checklist("- not a checkbox\n# Heading\n") == []


class TestExtractors:
    """Tests for extract_title and extract_description."""

    def test_title_strips_proposal_prefix(self) -> None:
        """Test 'Proposal:' is removed from the heading."""
        assert extract_title("# Proposal: Add auth\n\n## Why\n") == "Add auth"

    def test_title_missing(self) -> None:
        """Test no heading gives an empty title."""
        assert extract_title("just text") == ""

    def test_description_from_what_changes(self) -> None:
        """Test the What Changes section is preferred."""
        proposal = "# T\n\n## Why\nreasons\n\n## What Changes\n- A\n- B\n\n## Impact\n- none\n"
        assert extract_description(proposal) == "- A\n- B"

    def test_description_falls_back_to_prose(self) -> None:
        """Test the first three non-heading lines are used otherwise."""
        proposal = "# T\nline one\nline two\n## Sub\nline three\nline four\n"
        assert extract_description(proposal) == "line one\nline two\nline three"

    def test_description_capped(self) -> None:
        """Test the description is at most 500 characters."""
        proposal = "# T\n\n## What Changes\n" + "x" * 800 + "\n"
        assert len(extract_description(proposal)) == 500


class TestPRDGenerator:
    """Tests for PRDGenerator."""

    def test_generates_story_per_task(self, tmp_path: Path, write_task) -> None:
        """Test ids, priorities and fields of generated stories."""
        tasks_dir = tmp_path / "tasks"
        write_task(tasks_dir, "b-second", title="Second")
        write_task(tasks_dir, "a-first", title="First", checklist=["- [x] 1.1 Done", "- [x] 1.2 Also"])
        prd = PRDGenerator(tasks_dir).generate("My Project")

        assert prd.project == "My Project"
        assert prd.branch_name == "ralph/my-project"
        assert [s.id for s in prd.user_stories] == ["US-001", "US-002"]
        first, second = prd.user_stories
        assert first.title == "First"
        assert first.priority == 1
        assert first.passes is True
        assert first.source_task_id == "a-first"
        assert second.passes is False
        assert second.acceptance_criteria == ["Implement", "Test"]

    def test_skips_archive_and_dirs_without_proposal(self, tmp_path: Path, write_task) -> None:
        """Test archive/ and incomplete directories are ignored."""
        tasks_dir = tmp_path / "tasks"
        write_task(tasks_dir, "real-task")
        write_task(tasks_dir / "archive", "2026-01-01-old")
        (tasks_dir / "empty-dir").mkdir()
        prd = PRDGenerator(tasks_dir).generate("p")
        assert [s.source_task_id for s in prd.user_stories] == ["real-task"]

    def test_missing_tasks_dir(self, tmp_path: Path) -> None:
        """Test a missing tasks directory yields an empty PRD."""
        prd = PRDGenerator(tmp_path / "nope").generate("p")
        assert prd.user_stories == []

    def test_criteria_capped_and_defaulted(self, tmp_path: Path, write_task) -> None:
        """Test at most 10 criteria, and a default when there is no checklist."""
        tasks_dir = tmp_path / "tasks"
        many = write_task(tasks_dir, "many", checklist=[f"- [ ] item {i}" for i in range(15)])
        none = write_task(tasks_dir, "none", checklist=[])
        generator = PRDGenerator(tasks_dir)
        assert len(generator.story_from_task(many, 1).acceptance_criteria) == 10
        story = generator.story_from_task(none, 2)
        assert story.acceptance_criteria == ["Implementation complete"]
        assert story.passes is False

    def test_title_falls_back_to_dir_name(self, tmp_path: Path) -> None:
        """Test a proposal without a heading uses the directory name."""
        task_dir = tmp_path / "tasks" / "untitled"
        task_dir.mkdir(parents=True)
        (task_dir / "proposal.md").write_text("no heading here\n")
        story = PRDGenerator(tmp_path / "tasks").story_from_task(task_dir, 1)
        assert story.title == "untitled"


class TestMergeWithExisting:
    """Tests for merge_with_existing."""

    def test_keeps_progress_and_notes(self) -> None:
        """Test passes and notes carry over by sourceTaskId."""
        old = PRD(
            project="p",
            user_stories=[
                UserStory(id="US-001", title="a", passes=True, notes="done in #3", source_task_id="a"),
                UserStory(id="US-002", title="gone", source_task_id="gone"),
            ],
        )
        new = PRD(
            project="p",
            user_stories=[
                UserStory(id="US-001", title="b", source_task_id="b"),
                UserStory(id="US-002", title="a", source_task_id="a"),
            ],
        )
        merged = merge_with_existing(new, old)
        assert merged.get_story("US-002").passes is True
        assert merged.get_story("US-002").notes == "done in #3"
        assert merged.get_story("US-001").passes is False

    def test_no_old_prd(self, sample_prd: PRD) -> None:
        """Test merging with None returns the new PRD."""
        assert merge_with_existing(sample_prd, None) is sample_prd
