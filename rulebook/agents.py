"""Invoking external AI CLI tools.

Ralph drives one of three coding agents as a subprocess: ``claude``, ``amp``
or ``gemini``. The prompt goes in on stdin where the tool supports it, and
the combined output comes back for classification by ``rulebook.parser``.
"""

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from rulebook.errors import AgentNotFoundError

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124

INSTALL_HINTS: Dict[str, str] = {
    "claude": "npm install -g @anthropic-ai/claude-code",
    "amp": "npm install -g @sourcegraph/amp",
    "gemini": "npm install -g @google/gemini-cli",
}


@dataclass
class AgentRun:
    """Result of one AI tool invocation.

    Attributes:
        stdout: Captured standard output.
        stderr: Captured standard error.
        exit_code: Process exit code (124 on timeout).
        duration_ms: Wall time in milliseconds.
        timed_out: True if the process was killed for exceeding the timeout.
    """

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    timed_out: bool = False

    @property
    def output(self) -> str:
        """stdout and stderr combined, for classification."""
        if self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout


def build_command(tool: str, prompt: str, extra_args: Sequence[str] = ()) -> Tuple[List[str], Optional[str]]:
    """Build the command line for a tool.

    Args:
        tool: 'claude', 'amp' or 'gemini'.
        prompt: The prompt text.
        extra_args: Additional arguments appended after the tool's own flags.

    Returns:
        Tuple of (argv, stdin_text). stdin_text is None when the prompt is
        passed as an argument.

    Raises:
        ValueError: If the tool is not supported.
    """
    if tool == "claude":
        return ["claude", "-p", "--dangerously-skip-permissions", *extra_args], prompt
    if tool == "amp":
        return ["amp", "-x", *extra_args], prompt
    if tool == "gemini":
        return ["gemini", *extra_args, "-p", prompt], None
    raise ValueError(f"Unsupported AI tool: {tool}")


def check_tool_available(tool: str) -> Tuple[bool, Optional[str]]:
    """Check if an AI CLI tool is installed and responds.

    Returns:
        Tuple of (is_available, error_message).
        If available, error_message is None.
    """
    if tool not in INSTALL_HINTS:
        return False, f"Unsupported AI tool: {tool}"
    if shutil.which(tool) is None:
        return False, f"{tool} not found in PATH. Install it with: {INSTALL_HINTS[tool]}"
    try:
        result = subprocess.run(
            [tool, "--version"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except FileNotFoundError:
        return False, f"{tool} not found in PATH. Install it with: {INSTALL_HINTS[tool]}"
    except subprocess.TimeoutExpired:
        return False, f"{tool} timed out during version check"
    except OSError as e:
        return False, f"Error checking {tool}: {e}"
    if result.returncode != 0:
        return False, f"{tool} returned error: {result.stderr.strip()}"
    return True, None


def detect_available_tools() -> List[str]:
    """Return the supported tools that are installed, in preference order."""
    return [tool for tool in INSTALL_HINTS if check_tool_available(tool)[0]]


def run_agent(
    tool: str,
    prompt: str,
    cwd: Path,
    timeout_s: Optional[int] = None,
    extra_args: Sequence[str] = (),
) -> AgentRun:
    """Run an AI tool to completion.

    A run exceeding ``timeout_s`` is killed and reported with
    ``timed_out=True`` and exit code 124.

    Args:
        tool: 'claude', 'amp' or 'gemini'.
        prompt: Prompt text.
        cwd: Working directory for the tool.
        timeout_s: Timeout in seconds, None for no limit.
        extra_args: Additional command line arguments.

    Returns:
        AgentRun with the captured output.

    Raises:
        AgentNotFoundError: If the tool binary cannot be executed.
    """
    cmd, stdin_text = build_command(tool, prompt, extra_args)
    logger.debug("Running %s in %s", " ".join(cmd[:3]), cwd)
    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=str(cwd),
            text=True,
        )
    except FileNotFoundError as e:
        raise AgentNotFoundError(
            f"{tool} not found in PATH. Install it with: {INSTALL_HINTS.get(tool, tool)}"
        ) from e

    timed_out = False
    try:
        stdout, stderr = proc.communicate(input=stdin_text, timeout=timeout_s)
        exit_code = proc.returncode
    except subprocess.TimeoutExpired:
        logger.warning("%s exceeded %ss timeout, killing", tool, timeout_s)
        proc.kill()
        stdout, stderr = proc.communicate()
        exit_code = TIMEOUT_EXIT_CODE
        timed_out = True
    except KeyboardInterrupt:
        proc.kill()
        proc.wait()
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    return AgentRun(
        stdout=stdout or "",
        stderr=stderr or "",
        exit_code=exit_code,
        duration_ms=duration_ms,
        timed_out=timed_out,
    )


__all__ = [
    "TIMEOUT_EXIT_CODE",
    "AgentRun",
    "build_command",
    "check_tool_available",
    "detect_available_tools",
    "run_agent",
]
