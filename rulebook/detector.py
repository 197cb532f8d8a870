"""Project detection: languages, modules and an existing AGENTS.md."""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

logger = logging.getLogger(__name__)

SKIP_DIRS = {
    ".git",
    "node_modules",
    "venv",
    ".venv",
    "__pycache__",
    "dist",
    "build",
    "target",
    ".tox",
    ".mypy_cache",
}
MAX_SCAN_FILES = 5000

_BLOCK_START_RE = re.compile(r"<!--\s*([A-Z0-9_]+):START\s*-->")
_BLOCK_END_RE = re.compile(r"<!--\s*([A-Z0-9_]+):END\s*-->")

MCP_CONFIG_FILES = ("mcp.json", "mcp-config.json", ".cursor/mcp.json", ".mcp.json")


@dataclass
class LanguageDetection:
    language: str
    confidence: float
    indicators: List[str] = field(default_factory=list)


@dataclass
class ModuleDetection:
    module: str
    source: str


@dataclass
class AgentBlock:
    """A ``<!-- NAME:START -->`` ... ``<!-- NAME:END -->`` block.

    ``start_line`` and ``end_line`` are 0-based and point at the marker lines.
    """

    name: str
    start_line: int
    end_line: int
    content: str


@dataclass
class ExistingAgents:
    path: Path
    content: str
    blocks: List[AgentBlock] = field(default_factory=list)

    def block_names(self) -> List[str]:
        return [b.name for b in self.blocks]


@dataclass
class DetectionResult:
    languages: List[LanguageDetection] = field(default_factory=list)
    modules: List[ModuleDetection] = field(default_factory=list)
    existing_agents: Optional[ExistingAgents] = None

    @property
    def language_names(self) -> List[str]:
        return [d.language for d in self.languages]

    @property
    def module_names(self) -> List[str]:
        return [d.module for d in self.modules]


def parse_agent_blocks(content: str) -> List[AgentBlock]:
    """Find the named blocks in an AGENTS.md file.

    An unterminated block is ignored. A START inside an open block restarts
    the block at the new marker.
    """
    blocks = []
    current_name: Optional[str] = None
    start = 0
    body: List[str] = []
    for i, line in enumerate(content.split("\n")):
        start_match = _BLOCK_START_RE.search(line)
        end_match = _BLOCK_END_RE.search(line)
        if start_match:
            current_name, start, body = start_match.group(1), i, [line]
        elif end_match and current_name is not None:
            body.append(line)
            blocks.append(AgentBlock(current_name, start, i, "\n".join(body)))
            current_name = None
        elif current_name is not None:
            body.append(line)
    return blocks


def _iter_files(root: Path) -> Iterator[Path]:
    count = 0
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
        for name in filenames:
            yield Path(dirpath) / name
            count += 1
            if count >= MAX_SCAN_FILES:
                return


def _count_by_suffix(root: Path) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for path in _iter_files(root):
        counts[path.suffix] = counts.get(path.suffix, 0) + 1
    return counts


def _present(root: Path, names: Sequence[str]) -> List[str]:
    return [n for n in names if (root / n).exists()]


def detect_languages(root: Path) -> List[LanguageDetection]:
    """Detect languages from indicator files and source file counts.

    Confidence is 1.0 when both an indicator file and source files exist,
    lower with only one of them. Results are sorted by confidence.
    """
    suffixes = _count_by_suffix(root)
    rules = [
        ("python", ["pyproject.toml", "setup.py", "setup.cfg", "requirements.txt"], [".py"]),
        ("typescript", ["tsconfig.json"], [".ts", ".tsx"]),
        ("javascript", ["package.json"], [".js", ".jsx", ".mjs", ".cjs"]),
        ("rust", ["Cargo.toml"], [".rs"]),
        ("go", ["go.mod"], [".go"]),
        ("java", ["pom.xml", "build.gradle", "build.gradle.kts"], [".java"]),
    ]
    detections = []
    for language, indicator_files, exts in rules:
        found = _present(root, indicator_files)
        sources = sum(suffixes.get(ext, 0) for ext in exts)
        if not found and not sources:
            continue
        if language == "javascript" and "typescript" in [d.language for d in detections] and not sources:
            continue
        indicators = found + ([f"{sources} {'/'.join(exts)} files"] if sources else [])
        if found and sources:
            confidence = 1.0
        elif found:
            confidence = 0.7
        else:
            confidence = 0.5
        detections.append(LanguageDetection(language, confidence, indicators))
    return sorted(detections, key=lambda d: d.confidence, reverse=True)


def _mcp_servers(root: Path) -> Dict[str, str]:
    servers: Dict[str, str] = {}
    for rel in MCP_CONFIG_FILES:
        path = root / rel
        if not path.is_file():
            continue
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable MCP config %s: %s", rel, e)
            continue
        for key in ("mcpServers", "servers"):
            section = data.get(key) if isinstance(data, dict) else None
            if isinstance(section, dict):
                for name in section:
                    servers.setdefault(name.lower(), rel)
    return servers


def detect_modules(root: Path) -> List[ModuleDetection]:
    """Detect integrations that have a rules block (github, playwright, context7)."""
    modules: List[ModuleDetection] = []
    servers = _mcp_servers(root)

    def add(name: str, source: str) -> None:
        if name not in [m.module for m in modules]:
            modules.append(ModuleDetection(name, source))

    workflows = root / ".github" / "workflows"
    if workflows.is_dir() and any(workflows.glob("*.y*ml")):
        add("github", ".github/workflows")
    playwright = [p.name for p in root.glob("playwright.config.*")]
    if playwright:
        add("playwright", playwright[0])
    for name in ("github", "playwright", "context7"):
        if name in servers:
            add(name, servers[name])
    return modules


def detect_existing_agents(root: Path) -> Optional[ExistingAgents]:
    path = root / "AGENTS.md"
    if not path.is_file():
        return None
    content = path.read_text()
    return ExistingAgents(path=path, content=content, blocks=parse_agent_blocks(content))


def detect_project(root: Path) -> DetectionResult:
    return DetectionResult(
        languages=detect_languages(root),
        modules=detect_modules(root),
        existing_agents=detect_existing_agents(root),
    )


__all__ = [
    "LanguageDetection",
    "ModuleDetection",
    "AgentBlock",
    "ExistingAgents",
    "DetectionResult",
    "parse_agent_blocks",
    "detect_languages",
    "detect_modules",
    "detect_existing_agents",
    "detect_project",
]
