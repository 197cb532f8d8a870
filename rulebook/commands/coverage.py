"""rulebook check-coverage command."""

from pathlib import Path
from typing import Optional

from rulebook.config import ConfigManager, get_global_config
from rulebook.coverage import check_coverage
from rulebook.utils import Colors

__all__ = ["cmd_check_coverage"]


def cmd_check_coverage(project_root: Path, threshold: Optional[float] = None) -> int:
    """Run the project's coverage command and compare against the threshold.

    Args:
        project_root: Project root directory.
        threshold: Required percentage; defaults to ``coverageThreshold``
            from ``.rulebook``, then the global config.

    Returns:
        0 when coverage meets the threshold, 1 otherwise.
    """
    if threshold is None:
        manager = ConfigManager(project_root)
        if manager.exists():
            threshold = manager.load().coverage_threshold
        else:
            threshold = get_global_config().coverage_threshold

    print(f"{Colors.CYAN}Checking test coverage{Colors.NC}")
    result = check_coverage(project_root, threshold)
    if result.command:
        print(f"  Command: {' '.join(result.command)}")
    print(f"  Threshold: {threshold:g}%")

    if result.percentage is None:
        print(f"{Colors.RED}Error: {result.error}{Colors.NC}")
        return 1

    mark = f"{Colors.GREEN}✓" if result.meets_threshold else f"{Colors.RED}✗"
    print(f"  Actual: {mark} {result.percentage:.2f}%{Colors.NC}")
    for metric, pct in result.details.items():
        print(f"    {metric.capitalize()}: {pct:.2f}%")

    if result.meets_threshold:
        print(f"{Colors.GREEN}Coverage meets threshold of {threshold:g}%{Colors.NC}")
        return 0
    print(f"{Colors.RED}Coverage {result.percentage:.2f}% is below threshold {threshold:g}%{Colors.NC}")
    return 1
