"""Project test coverage check.

``rulebook check-coverage`` picks the coverage command from the project's
build files, runs it and reads the overall percentage from a coverage
report when one is written (istanbul ``coverage-summary.json``, JaCoCo XML)
or from the command output otherwise.
"""

import json
import logging
import re
import subprocess
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from rulebook.parser import parse_coverage_percentage

logger = logging.getLogger(__name__)

# (indicator files, command); first match wins
COVERAGE_COMMANDS = [
    (["package.json"], ["npm", "test", "--", "--coverage"]),
    (["Cargo.toml"], ["cargo", "llvm-cov", "--summary-only"]),
    (["pyproject.toml", "setup.py", "setup.cfg"], ["pytest", "--cov", "--cov-report=term"]),
    (["go.mod"], ["go", "test", "-cover", "./..."]),
    (["pom.xml"], ["mvn", "-B", "verify", "jacoco:report"]),
]

ISTANBUL_SUMMARY = Path("coverage") / "coverage-summary.json"
JACOCO_REPORT = Path("target") / "site" / "jacoco" / "jacoco.xml"

_GO_PACKAGE_RE = re.compile(r"coverage:\s*(\d+(?:\.\d+)?)% of statements")


@dataclass
class CoverageResult:
    """Outcome of a coverage run.

    Attributes:
        threshold: Required percentage.
        percentage: Overall percentage, None when it could not be determined.
        command: The command that was run, empty if none applies.
        details: Per-metric percentages (lines, statements, functions,
            branches) when the report provides them.
        error: Why no percentage is available.
    """

    threshold: float
    percentage: Optional[float] = None
    command: List[str] = field(default_factory=list)
    details: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def meets_threshold(self) -> bool:
        return self.percentage is not None and self.percentage >= self.threshold


def coverage_command(project_root: Path) -> Optional[List[str]]:
    """Coverage command for the project's build files, None if unknown."""
    for indicators, command in COVERAGE_COMMANDS:
        if any((project_root / name).is_file() for name in indicators):
            return list(command)
    return None


def read_istanbul_summary(path: Path) -> Dict[str, float]:
    """Read the ``total`` percentages of an istanbul json-summary report."""
    total = json.loads(path.read_text(encoding="utf-8")).get("total", {})
    return {
        metric: float(total[metric]["pct"])
        for metric in ("lines", "statements", "functions", "branches")
        if isinstance(total.get(metric), dict) and "pct" in total[metric]
    }


def read_jacoco_report(path: Path) -> Optional[float]:
    """Line coverage from the report-level LINE counter of a JaCoCo XML file."""
    root = ET.parse(path).getroot()
    for counter in root.findall("counter"):
        if counter.get("type") == "LINE":
            covered = int(counter.get("covered", 0))
            missed = int(counter.get("missed", 0))
            return 100.0 * covered / (covered + missed) if covered + missed else None
    return None


def percentage_from_output(output: str) -> Optional[float]:
    """Overall percentage from tool output.

    ``go test -cover`` prints one line per package; their average is used.
    """
    packages = [float(m) for m in _GO_PACKAGE_RE.findall(output)]
    if len(packages) > 1:
        return sum(packages) / len(packages)
    return parse_coverage_percentage(output)


def check_coverage(
    project_root: Path,
    threshold: float,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    timeout_s: Optional[int] = None,
) -> CoverageResult:
    """Run the project's coverage command and compare against ``threshold``.

    Args:
        project_root: Project root directory.
        threshold: Required percentage.
        runner: Runs the command; takes ``subprocess.run`` arguments.
        timeout_s: Timeout in seconds, None for no limit.

    Returns:
        The result. A missing tool, a timeout or output without a coverage
        figure leave ``percentage`` as None and set ``error``.
    """
    result = CoverageResult(threshold=threshold)
    command = coverage_command(project_root)
    if command is None:
        names = ", ".join(name for indicators, _ in COVERAGE_COMMANDS for name in indicators)
        result.error = f"No supported build file found ({names})"
        return result
    result.command = command

    logger.info("Running coverage: %s", " ".join(command))
    try:
        proc = runner(
            command,
            cwd=project_root,
            capture_output=True,
            text=True,
            timeout=timeout_s,
        )
    except FileNotFoundError:
        result.error = f"{command[0]} not found on PATH"
        return result
    except subprocess.TimeoutExpired:
        result.error = f"Coverage run exceeded {timeout_s}s"
        return result
    logger.debug("Coverage command exited with %d", proc.returncode)

    summary = project_root / ISTANBUL_SUMMARY
    jacoco = project_root / JACOCO_REPORT
    if summary.is_file():
        try:
            result.details = read_istanbul_summary(summary)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Could not read %s: %s", summary, e)
        result.percentage = result.details.get("lines")
    elif jacoco.is_file():
        try:
            result.percentage = read_jacoco_report(jacoco)
        except (ET.ParseError, ValueError) as e:
            logger.warning("Could not read %s: %s", jacoco, e)
    if result.percentage is None:
        result.percentage = percentage_from_output(f"{proc.stdout}\n{proc.stderr}")
    if result.percentage is None:
        result.error = (
            f"No coverage figure in the output of '{' '.join(command)}' (exit code {proc.returncode})"
        )
    return result


__all__ = [
    "COVERAGE_COMMANDS",
    "CoverageResult",
    "coverage_command",
    "read_istanbul_summary",
    "read_jacoco_report",
    "percentage_from_output",
    "check_coverage",
]
