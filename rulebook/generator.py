"""AGENTS.md generation and merging.

AGENTS.md is made of named blocks::

    <!-- RULEBOOK:START -->
    ...
    <!-- RULEBOOK:END -->

The RULEBOOK block comes from ``templates/core/RULEBOOK.md``; each configured
language and module adds a block from ``templates/languages/<name>.md`` or
``templates/modules/<name>.md``. Merging replaces blocks in place and leaves
everything outside the blocks alone, so users can keep their own sections.

Project-specific rules go in ``AGENTS.override.md``. rulebook creates it once
and never rewrites it; its content is copied into an OVERRIDE block at the
end of AGENTS.md on every generation.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

from rulebook.config import ProjectConfig
from rulebook.detector import parse_agent_blocks
from rulebook.prompts import get_templates_dir, render
from rulebook.utils import utc_now_iso

logger = logging.getLogger(__name__)

CORE_BLOCK = "RULEBOOK"
OVERRIDE_BLOCK = "OVERRIDE"
OVERRIDE_FILE = "AGENTS.override.md"

OVERRIDE_TEMPLATE = """<!-- OVERRIDE:START -->
# Project-Specific Overrides

Add your custom rules and team conventions here.
This file is never overwritten by `rulebook init` or `rulebook update`.
<!-- OVERRIDE:END -->
"""
_OVERRIDE_RE = re.compile(r"<!-- OVERRIDE:START -->(.*?)<!-- OVERRIDE:END -->", re.DOTALL)
_OVERRIDE_TEMPLATE_LINES = frozenset(line.strip() for line in OVERRIDE_TEMPLATE.splitlines())


def block_name(name: str) -> str:
    return name.upper().replace("-", "_")


def wrap_block(name: str, body: str) -> str:
    return f"<!-- {name}:START -->\n{body.strip()}\n<!-- {name}:END -->"


def available_templates(kind: str) -> List[str]:
    """Names of the packaged templates of a kind ('languages' or 'modules')."""
    directory = get_templates_dir() / kind
    if not directory.is_dir():
        return []
    return sorted(p.stem for p in directory.glob("*.md"))


def _load_template(kind: str, name: str) -> Optional[str]:
    path = get_templates_dir() / kind / f"{name.lower()}.md"
    if not path.is_file():
        logger.warning("No %s template for '%s', skipping", kind.rstrip("s"), name)
        return None
    return path.read_text()


def generate_rulebook_block(config: ProjectConfig) -> str:
    template = (get_templates_dir() / "core" / "RULEBOOK.md").read_text()
    body = render(
        template,
        {
            "PROJECT_NAME": config.project_name or "this project",
            "COVERAGE_THRESHOLD": f"{config.coverage_threshold:g}",
            "LANGUAGES": ", ".join(config.languages) or "not detected",
            "RULEBOOK_DIR": config.rulebook_dir,
            "TIMESTAMP": utc_now_iso(),
        },
    )
    return wrap_block(CORE_BLOCK, body)


def generate_language_block(language: str, config: ProjectConfig) -> Optional[str]:
    template = _load_template("languages", language)
    if template is None:
        return None
    body = render(template, {"COVERAGE_THRESHOLD": f"{config.coverage_threshold:g}"})
    return wrap_block(block_name(language), body)


def generate_module_block(module: str) -> Optional[str]:
    template = _load_template("modules", module)
    if template is None:
        return None
    return wrap_block(block_name(module), template)


def read_override_content(project_root: Path) -> str:
    """Custom content of AGENTS.override.md, or "" if there is none.

    The OVERRIDE markers are stripped. A file still holding only the
    template text counts as empty.
    """
    path = project_root / OVERRIDE_FILE
    if not path.is_file():
        return ""
    raw = path.read_text(encoding="utf-8")
    match = _OVERRIDE_RE.search(raw)
    content = match.group(1).strip() if match else raw.strip()
    if all(line.strip() in _OVERRIDE_TEMPLATE_LINES for line in content.splitlines()):
        return ""
    return content


def init_override(project_root: Path) -> bool:
    """Create AGENTS.override.md from the template unless it exists.

    Returns:
        True if the file was created.
    """
    path = project_root / OVERRIDE_FILE
    if path.exists():
        return False
    path.write_text(OVERRIDE_TEMPLATE, encoding="utf-8")
    logger.info("Created %s", path)
    return True


def generate_override_block(override: str) -> Optional[str]:
    return wrap_block(OVERRIDE_BLOCK, override) if override.strip() else None


def _blocks_for(config: ProjectConfig, override: str = "") -> List[str]:
    blocks = [generate_rulebook_block(config)]
    for language in config.languages:
        block = generate_language_block(language, config)
        if block:
            blocks.append(block)
    if config.mode != "minimal":
        for module in config.modules:
            block = generate_module_block(module)
            if block:
                blocks.append(block)
    override_block = generate_override_block(override)
    if override_block:
        blocks.append(override_block)
    return blocks


def generate_agents_content(config: ProjectConfig, override: str = "") -> str:
    """Render a complete AGENTS.md for a project config."""
    header = f"# {config.project_name or 'Project'} - AI Agent Instructions"
    return "\n\n".join([header] + _blocks_for(config, override)) + "\n"


def _replace_block(content: str, name: str, new_block: str) -> Optional[str]:
    """Replace block ``name`` in content, or return None if it is absent.

    An empty ``new_block`` removes the block.
    """
    for block in parse_agent_blocks(content):
        if block.name == name:
            lines = content.split("\n")
            if not new_block:
                kept = "\n".join(lines[: block.start_line] + lines[block.end_line + 1 :])
                return re.sub(r"\n{3,}", "\n\n", kept)
            merged = lines[: block.start_line] + new_block.split("\n") + lines[block.end_line + 1 :]
            return "\n".join(merged)
    return None


def merge_full_agents(existing: str, config: ProjectConfig, override: str = "") -> str:
    """Merge freshly generated blocks into an existing AGENTS.md.

    Existing blocks are replaced in place. A missing RULEBOOK block is
    inserted at the top; missing language, module and OVERRIDE blocks are
    appended. An OVERRIDE block is removed once the override is empty.
    Text outside the blocks is preserved.

    Args:
        existing: Current AGENTS.md content.
        config: Project config to generate from.
        override: Custom content from AGENTS.override.md.

    Returns:
        The merged content, ending with a single newline.
    """
    content = existing.strip("\n")
    for block in _blocks_for(config, override):
        name = parse_agent_blocks(block)[0].name
        replaced = _replace_block(content, name, block)
        if replaced is not None:
            content = replaced
        elif name == CORE_BLOCK:
            content = f"{block}\n\n{content}" if content else block
        else:
            content = f"{content}\n\n{block}" if content else block
    if not override.strip():
        removed = _replace_block(content, OVERRIDE_BLOCK, "")
        if removed is not None:
            content = removed
    return content.strip("\n") + "\n"


def write_agents_file(project_root: Path, config: ProjectConfig) -> Path:
    """Create or merge AGENTS.md at the project root, folding in AGENTS.override.md."""
    path = project_root / "AGENTS.md"
    override = read_override_content(project_root)
    if path.is_file():
        path.write_text(merge_full_agents(path.read_text(), config, override))
    else:
        path.write_text(generate_agents_content(config, override))
    return path


__all__ = [
    "CORE_BLOCK",
    "OVERRIDE_BLOCK",
    "OVERRIDE_FILE",
    "block_name",
    "wrap_block",
    "available_templates",
    "generate_rulebook_block",
    "generate_language_block",
    "generate_module_block",
    "read_override_content",
    "init_override",
    "generate_override_block",
    "generate_agents_content",
    "merge_full_agents",
    "write_agents_file",
]
