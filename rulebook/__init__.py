"""Rulebook - AI agent guidance files and the Ralph autonomous loop.

Generates and maintains AGENTS.md, task checklists and spec files for a
project, and drives an external AI coding tool through a PRD backlog of user
stories until they pass the project's quality gates.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
