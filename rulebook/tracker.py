"""Iteration history for the Ralph loop.

Every iteration is stored as ``history/iteration-N.json``. The tracker reads
them back for statistics, for the ``ralph history`` command and for the
compressed history that is embedded in the next iteration's prompt.
"""

import json
import logging
import re
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from rulebook.models import STATUS_FAILED, STATUS_SUCCESS, IterationMetadata, IterationResult
from rulebook.utils import format_duration

logger = logging.getLogger(__name__)

_ITERATION_FILE_RE = re.compile(r"^iteration-(\d+)\.json$")


class MemoryAdapter(Protocol):
    """Optional long-term memory the loop can write learnings to.

    ``save_memory`` receives dicts with ``type``, ``title``, ``content`` and
    ``tags``. ``search_memory`` returns dicts with at least ``title`` and
    ``content``.
    """

    def save_memory(self, entry: Dict[str, Any]) -> Any:
        ...

    def search_memory(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        ...


def _gate_marks(meta: IterationMetadata) -> str:
    qc = meta.quality_checks
    marks = [
        ("ts", qc.type_check),
        ("lint", qc.lint),
        ("test", qc.tests),
        ("cov", qc.coverage_met),
    ]
    return " ".join(f"{'✓' if ok else '✗'}{name}" for name, ok in marks)


def _yes_no(value: bool) -> str:
    return "✓" if value else "✗"


class IterationTracker:
    """Reads and writes per-iteration history files."""

    def __init__(self, ralph_dir: Path) -> None:
        self.ralph_dir = ralph_dir
        self.history_dir = ralph_dir / "history"
        self.memory_adapter: Optional[MemoryAdapter] = None

    def set_memory_adapter(self, adapter: Optional[MemoryAdapter]) -> None:
        self.memory_adapter = adapter

    def record_iteration(
        self, result: IterationResult, started_at: Optional[str] = None
    ) -> Path:
        """Write the history file for one iteration.

        Args:
            result: Classified iteration result.
            started_at: When the iteration began; defaults to the result timestamp.

        Returns:
            Path of the written history file.
        """
        self.history_dir.mkdir(parents=True, exist_ok=True)
        meta = IterationMetadata.from_result(result, started_at or result.timestamp)
        path = self.history_dir / f"iteration-{result.iteration}.json"
        path.write_text(json.dumps(meta.to_dict(), indent=2) + "\n")
        logger.info("Recorded iteration #%d", result.iteration)
        return path

    def _iteration_files(self) -> List[Path]:
        if not self.history_dir.is_dir():
            return []
        numbered = []
        for path in self.history_dir.iterdir():
            match = _ITERATION_FILE_RE.match(path.name)
            if match:
                numbered.append((int(match.group(1)), path))
        return [path for _, path in sorted(numbered, reverse=True)]

    def _read(self, path: Path) -> Optional[IterationMetadata]:
        try:
            return IterationMetadata.from_dict(json.loads(path.read_text()))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Skipping unreadable history file %s: %s", path.name, e)
            return None

    def get_history(
        self, limit: Optional[int] = None, task_id: Optional[str] = None
    ) -> List[IterationMetadata]:
        """Return recorded iterations, newest first.

        Args:
            limit: Maximum number of entries.
            task_id: Only iterations for this story.
        """
        history = []
        for path in self._iteration_files():
            meta = self._read(path)
            if meta is None:
                continue
            if task_id and meta.task_id != task_id:
                continue
            history.append(meta)
            if limit and len(history) >= limit:
                break
        return history

    def get_iteration(self, number: int) -> Optional[IterationMetadata]:
        path = self.history_dir / f"iteration-{number}.json"
        if not path.exists():
            return None
        return self._read(path)

    def get_statistics(self) -> Dict[str, Any]:
        """Aggregate statistics over the whole history.

        Returns:
            Dict with total/successful/failed counts, average duration,
            success rate (0..1) and per-gate pass counts.
        """
        history = self.get_history()
        total = len(history)
        breakdown = {
            "type_check": sum(1 for m in history if m.quality_checks.type_check),
            "lint": sum(1 for m in history if m.quality_checks.lint),
            "tests": sum(1 for m in history if m.quality_checks.tests),
            "coverage": sum(1 for m in history if m.quality_checks.coverage_met),
        }
        successful = sum(1 for m in history if m.status == STATUS_SUCCESS)
        return {
            "total_iterations": total,
            "successful_iterations": successful,
            "failed_iterations": sum(1 for m in history if m.status == STATUS_FAILED),
            "average_duration_ms": round(sum(m.duration_ms for m in history) / total)
            if total
            else 0,
            "success_rate": successful / total if total else 0.0,
            "quality_breakdown": breakdown,
        }

    def get_learnings(self) -> List[str]:
        """Human-readable observations about the history, newest first."""
        history = self.get_history()
        learnings = []
        for meta in history:
            if meta.status == STATUS_SUCCESS and meta.quality_checks.all_passed():
                learnings.append(
                    f'Iteration {meta.iteration}: full quality gate pass for "{meta.task_title}"'
                )
            elif meta.status == STATUS_FAILED:
                failures = _failed_gates(meta)
                if failures:
                    learnings.append(
                        f"Iteration {meta.iteration}: failed quality checks: {', '.join(failures)}"
                    )
            learnings.extend(meta.learnings)

        if history:
            stats = self.get_statistics()
            learnings.append(
                f"Success rate: {stats['success_rate'] * 100:.1f}% "
                f"({stats['successful_iterations']}/{stats['total_iterations']})"
            )
            learnings.append(
                f"Average iteration time: {format_duration(stats['average_duration_ms'])}"
            )
        return learnings

    def get_task_insights(self, task_id: str) -> Dict[str, Any]:
        """Per-story insights: status distribution and quality trend.

        The quality trend is the percentage of gates passed per iteration,
        oldest first.
        """
        history = self.get_history(task_id=task_id)
        if not history:
            return {
                "total_iterations": 0,
                "status_distribution": {},
                "average_duration_ms": 0,
                "quality_trend": [],
            }
        ordered = sorted(history, key=lambda m: m.iteration)
        return {
            "total_iterations": len(history),
            "status_distribution": dict(Counter(m.status for m in history)),
            "average_duration_ms": round(sum(m.duration_ms for m in history) / len(history)),
            "quality_trend": [m.quality_checks.passed_count() / 4 * 100 for m in ordered],
        }

    def build_compressed_context(self, recent_count: int = 3, threshold: int = 5) -> str:
        """Render the iteration history for the next prompt.

        Below ``threshold`` iterations every iteration is listed in full.
        From ``threshold`` on, older iterations collapse into one ``Iter N:``
        line each and only the last ``recent_count`` keep full details.

        Args:
            recent_count: Iterations shown in full once compression applies.
            threshold: History length at which compression starts.

        Returns:
            Markdown text.
        """
        ordered = sorted(self.get_history(), key=lambda m: m.iteration)
        if not ordered:
            return "No iteration history yet."

        sections = []
        if len(ordered) < threshold:
            sections.append("## Iteration History")
            sections.extend(_format_full(meta) for meta in ordered)
        else:
            split = max(len(ordered) - recent_count, 0)
            older, recent = ordered[:split], ordered[split:]
            if older:
                sections.append("## History Summary")
                sections.append(
                    "\n".join(
                        f"Iter {m.iteration}: {m.task_id} {m.status} {_gate_marks(m)}"
                        for m in older
                    )
                )
            sections.append("## Recent Iterations")
            sections.extend(_format_full(meta) for meta in recent)

        memories = self._search_memories(ordered)
        if memories:
            sections.append("## Relevant Past Learnings")
            sections.append(
                "\n".join(
                    f"- **{m.get('title', 'Untitled')}**: {m.get('content', '')}"
                    for m in memories
                )
            )
        return "\n\n".join(sections)

    def _search_memories(self, ordered: List[IterationMetadata]) -> List[Dict[str, Any]]:
        if self.memory_adapter is None:
            return []
        latest = ordered[-1]
        query = " ".join([latest.task_title] + _failed_gates(latest)).strip() or "ralph"
        try:
            return list(self.memory_adapter.search_memory(query, 5) or [])
        except Exception as e:
            logger.warning("Memory search failed: %s", e)
            return []


def _failed_gates(meta: IterationMetadata) -> List[str]:
    qc = meta.quality_checks
    gates = [
        ("type-check", qc.type_check),
        ("lint", qc.lint),
        ("tests", qc.tests),
        ("coverage", qc.coverage_met),
    ]
    return [name for name, ok in gates if not ok]


def _format_full(meta: IterationMetadata) -> str:
    qc = meta.quality_checks
    lines = [
        f"### Iteration {meta.iteration} - {meta.task_id}: {meta.task_title}",
        f"Status: {meta.status} ({format_duration(meta.duration_ms)})",
        f"Quality: type={_yes_no(qc.type_check)} lint={_yes_no(qc.lint)} "
        f"tests={_yes_no(qc.tests)} coverage={_yes_no(qc.coverage_met)}",
    ]
    if meta.output_summary:
        lines.append(f"Summary: {meta.output_summary}")
    if meta.learnings:
        lines.append("Learnings: " + "; ".join(meta.learnings))
    if meta.errors:
        lines.append("Errors: " + "; ".join(meta.errors))
    return "\n".join(lines)


__all__ = ["MemoryAdapter", "IterationTracker"]
