"""Classify AI tool output into an iteration result.

The AI tool is asked to run the project's quality gates (type check, lint,
tests, coverage) and report the results. This module reads that free-form
output and decides which gates passed. Gates are judged line by line: a gate
only looks at the lines that mention it, after zero-count phrases such as
"0 errors" or "no lint errors" have been removed, so a clean summary line is
not mistaken for a failure.
"""

import re
from typing import Iterable, List, Optional

from rulebook.models import (
    STATUS_FAILED,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    IterationResult,
    QualityChecks,
)
from rulebook.utils import utc_now_iso

COMPLETION_PROMISE = "<promise>COMPLETE</promise>"
DEFAULT_COVERAGE_THRESHOLD = 95.0

MAX_LEARNINGS = 5
MAX_ERRORS = 3
MAX_CONTEXT_LOSS = 10

_FAILURE_NOUNS = r"(?:errors?|fail(?:ed|ures?|ing)?|problems?|warnings?|issues?)"
_ZERO_COUNT_RE = re.compile(
    rf"\b(?:0|no|zero)\s+(?:[\w-]+\s+){{0,2}}?{_FAILURE_NOUNS}\b"
    rf"|\bwithout\s+(?:any\s+)?{_FAILURE_NOUNS}\b",
    re.IGNORECASE,
)
_FAILURE_WORD_RE = re.compile(r"\b(?:errors?|fail(?:ed|ures?|ing|s)?)\b", re.IGNORECASE)

_TS_ERROR_RE = re.compile(r"\berror\s+TS\d+", re.IGNORECASE)
_MYPY_SUMMARY_RE = re.compile(r"\bFound\s+(\d+)\s+errors?\s+in\b", re.IGNORECASE)
# pyright: "3 errors, 0 warnings, 0 informations" and "/src/a.py:3:1 - error: ..."
_PYRIGHT_SUMMARY_RE = re.compile(
    r"^\s*(\d+)\s+errors?,\s*\d+\s+warnings?,\s*\d+\s+informations?\b", re.IGNORECASE | re.MULTILINE
)
_PYRIGHT_ERROR_RE = re.compile(r"^\s*\S+:\d+:\d+\s+-\s+error:", re.MULTILINE)
_TYPE_CHECK_RE = re.compile(
    r"\b(?:tsc|type[- ]?check(?:ing|er)?|typescript|mypy|pyright)\b", re.IGNORECASE
)

_LINT_PROBLEMS_RE = re.compile(
    r"(\d+)\s+problems?\s*\(\s*(\d+)\s+errors?,\s*(\d+)\s+warnings?\s*\)", re.IGNORECASE
)
_LINT_RE = re.compile(r"(?:lint|\bruff\b|\bflake8\b|\bclippy\b|\bpylint\b)", re.IGNORECASE)

_TESTS_FAILED_RE = re.compile(r"\b(\d+)\s+(?:failed|failing|failures?)\b", re.IGNORECASE)
_TESTS_PASSED_RE = re.compile(r"\b(\d+)\s+(?:passed|passing)\b", re.IGNORECASE)
_TESTS_RE = re.compile(r"\b(?:tests?|testing|jest|vitest|mocha|pytest|specs?)\b", re.IGNORECASE)
_PASS_MARKER_RE = re.compile(r"(?:pass|✓|success|\bok\b)", re.IGNORECASE)

_COVERAGE_PATTERNS = [
    # vitest / istanbul text table
    re.compile(r"All files\s*\|\s*(\d+(?:\.\d+)?)"),
    # jest text-summary
    re.compile(r"^\s*Lines\s*:\s*(\d+(?:\.\d+)?)%", re.MULTILINE),
    # coverage.py report
    re.compile(r"^TOTAL\s+.*?(\d+(?:\.\d+)?)%\s*$", re.MULTILINE),
    re.compile(r"coverage:?\s*(\d+(?:\.\d+)?)%", re.IGNORECASE),
]

_LEARNING_RE = re.compile(
    r"^\s*(?:[-*]\s*)?(?:learnings?|insights?|patterns?|notes?|discovered|found|realized)"
    r"\b[\s:]*(.+?)\s*$",
    re.IGNORECASE | re.MULTILINE,
)
_ERROR_FRAGMENT_RE = re.compile(r"(?:error|failed|fail)[\s:]*([^\n]+)", re.IGNORECASE)
_EXCEPTION_LINE_RE = re.compile(r"(?:Error|Exception)[\s:]*[^\n]+")
_COMMIT_RE = re.compile(r"\bcommit\s+([0-9a-f]{7,40})\b", re.IGNORECASE)
_COMMIT_BRACKET_RE = re.compile(r"\[[\w./-]+(?:\s+\(root-commit\))?\s+([0-9a-f]{7,40})\]")
_CONTEXT_LOSS_PATTERNS = [
    re.compile(r"context.*loss", re.IGNORECASE),
    re.compile(r"context.*window", re.IGNORECASE),
    re.compile(r"ran out of.*context", re.IGNORECASE),
    re.compile(r"context.*exceeded", re.IGNORECASE),
]
_COMPLETION_KEYWORDS = (
    "complete",
    "done",
    "finished",
    "success",
    "implemented",
    "deployed",
    "committed",
)


def strip_zero_counts(line: str) -> str:
    """Remove phrases that report an absence of failures.

    >>> strip_zero_counts("eslint: 0 errors found, 0 warnings")
    'eslint:  found, '
    """
    return _ZERO_COUNT_RE.sub("", line)


def _has_failure(line: str) -> bool:
    return bool(_FAILURE_WORD_RE.search(strip_zero_counts(line)))


def _relevant(lines: Iterable[str], pattern: "re.Pattern[str]") -> List[str]:
    return [line for line in lines if pattern.search(line)]


def check_type_check(output: str) -> bool:
    """Type check passes when a checker is mentioned and nothing failed."""
    if _TS_ERROR_RE.search(output) or _PYRIGHT_ERROR_RE.search(output):
        return False
    summaries = _MYPY_SUMMARY_RE.findall(output) + _PYRIGHT_SUMMARY_RE.findall(output)
    if any(int(n) > 0 for n in summaries):
        return False
    lines = _relevant(output.splitlines(), _TYPE_CHECK_RE)
    if not lines:
        return False
    return not any(_has_failure(line) for line in lines)


def check_lint(output: str) -> bool:
    """Lint passes unless an error count or a failing lint line is reported.

    Warnings alone never fail the gate.
    """
    summaries = _LINT_PROBLEMS_RE.findall(output)
    if summaries:
        return all(int(errors) == 0 for _, errors, _ in summaries)
    lines = _relevant(output.splitlines(), _LINT_RE)
    if not lines:
        return False
    return not any(_has_failure(line) for line in lines)


def check_tests(output: str) -> bool:
    failed = [int(n) for n in _TESTS_FAILED_RE.findall(output)]
    passed = [int(n) for n in _TESTS_PASSED_RE.findall(output)]
    if any(n > 0 for n in failed):
        return False
    if any(n > 0 for n in passed):
        return True
    lines = _relevant(output.splitlines(), _TESTS_RE)
    if not lines:
        return False
    if any(_has_failure(line) for line in lines):
        return False
    return any(_PASS_MARKER_RE.search(line) for line in lines)


def parse_coverage_percentage(output: str) -> Optional[float]:
    """Extract the overall coverage percentage from test runner output.

    Recognized formats, in order of preference: the vitest/istanbul
    ``All files | NN.NN |`` table row, jest ``Lines : NN.N%``, the
    coverage.py ``TOTAL ... NN%`` row and a generic ``coverage: NN%``.

    Args:
        output: Raw tool output.

    Returns:
        The percentage, or None if no coverage figure was found.
    """
    for pattern in _COVERAGE_PATTERNS:
        match = pattern.search(output)
        if match:
            return float(match.group(1))
    return None


def extract_quality_checks(
    output: str, coverage_threshold: float = DEFAULT_COVERAGE_THRESHOLD
) -> QualityChecks:
    percent = parse_coverage_percentage(output)
    return QualityChecks(
        type_check=check_type_check(output),
        lint=check_lint(output),
        tests=check_tests(output),
        coverage_met=percent is not None and percent >= coverage_threshold,
        coverage_percent=percent,
    )


def determine_status(checks: QualityChecks, exit_code: int = 0) -> str:
    """Map gate results and the tool exit code to an iteration status.

    All four gates passing is a success and at least two is partial. A
    nonzero exit code never counts as a success.
    """
    passed = checks.passed_count()
    if passed == 4:
        status = STATUS_SUCCESS
    elif passed >= 2:
        status = STATUS_PARTIAL
    else:
        status = STATUS_FAILED
    if exit_code != 0 and status == STATUS_SUCCESS:
        status = STATUS_PARTIAL
    return status


def extract_learnings(output: str) -> List[str]:
    learnings = []
    for match in _LEARNING_RE.finditer(output):
        text = match.group(1).strip()
        if 10 < len(text) < 500 and text not in learnings:
            learnings.append(text)
    return learnings[:MAX_LEARNINGS]


def extract_errors(output: str) -> List[str]:
    cleaned = "\n".join(strip_zero_counts(line) for line in output.splitlines())
    errors: List[str] = []
    for match in _ERROR_FRAGMENT_RE.finditer(cleaned):
        text = match.group(1).strip()
        if 5 < len(text) < 300 and text not in errors:
            errors.append(text)
    for match in _EXCEPTION_LINE_RE.finditer(cleaned):
        text = match.group(0).strip()
        if len(text) > 5 and text not in errors:
            errors.append(text)
    return errors[:MAX_ERRORS]


def extract_git_commit(output: str) -> Optional[str]:
    for pattern in (_COMMIT_BRACKET_RE, _COMMIT_RE):
        match = pattern.search(output)
        if match:
            return match.group(1)
    return None


def generate_summary(output: str, status: str) -> str:
    lines = [line.strip() for line in output.splitlines() if len(line.strip()) > 20]
    summary = " ".join(lines[:3])[:300]
    if status not in summary.lower():
        summary = f"[{status.upper()}] {summary}".rstrip()
    return summary


def count_context_loss(output: str) -> int:
    count = sum(len(pattern.findall(output)) for pattern in _CONTEXT_LOSS_PATTERNS)
    return min(count, MAX_CONTEXT_LOSS)


def has_completion_promise(output: str) -> bool:
    return COMPLETION_PROMISE in output


def is_completion_detected(output: str) -> bool:
    if has_completion_promise(output):
        return True
    lower = output.lower()
    return any(keyword in lower for keyword in _COMPLETION_KEYWORDS)


def parse_agent_output(
    output: str,
    iteration: int,
    task_id: str,
    task_title: str,
    tool: str,
    coverage_threshold: float = DEFAULT_COVERAGE_THRESHOLD,
    execution_time_ms: int = 0,
    exit_code: int = 0,
) -> IterationResult:
    """Classify one iteration's tool output.

    Args:
        output: Combined stdout/stderr of the AI tool.
        iteration: Iteration number.
        task_id: Story id the iteration worked on.
        task_title: Story title.
        tool: AI tool name.
        coverage_threshold: Minimum coverage percentage for the coverage gate.
        execution_time_ms: Measured wall time of the tool run.
        exit_code: Tool exit code.

    Returns:
        The classified IterationResult.
    """
    checks = extract_quality_checks(output, coverage_threshold)
    status = determine_status(checks, exit_code)
    return IterationResult(
        iteration=iteration,
        timestamp=utc_now_iso(),
        task_id=task_id,
        task_title=task_title,
        status=status,
        ai_tool=tool,
        execution_time_ms=execution_time_ms,
        quality_checks=checks,
        output_summary=generate_summary(output, status),
        git_commit=extract_git_commit(output),
        errors=extract_errors(output),
        learnings=extract_learnings(output),
        context_loss_count=count_context_loss(output),
        parsed_completion=is_completion_detected(output),
        exit_code=exit_code,
    )


__all__ = [
    "COMPLETION_PROMISE",
    "DEFAULT_COVERAGE_THRESHOLD",
    "strip_zero_counts",
    "check_type_check",
    "check_lint",
    "check_tests",
    "parse_coverage_percentage",
    "extract_quality_checks",
    "determine_status",
    "extract_learnings",
    "extract_errors",
    "extract_git_commit",
    "generate_summary",
    "count_context_loss",
    "has_completion_promise",
    "is_completion_detected",
    "parse_agent_output",
]
