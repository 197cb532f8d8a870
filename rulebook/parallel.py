"""Batching of user stories for parallel Ralph execution.

Pure functions: dependency analysis from story-id references, partitioning
into dependency-ordered batches and splitting of batches whose stories
mention the same files.
"""

import re
from typing import Dict, List, Set

from rulebook.models import UserStory

_STORY_ID_RE = re.compile(r"\b(?:US|GH)-\d+\b")
_FILE_PATH_RE = re.compile(
    r"(?:^|[\s`\"'(])([A-Za-z0-9._/-]+\.(?:ts|js|tsx|jsx|json|css|scss|html|vue|svelte"
    r"|py|go|rs|java|rb|php|md|toml|yaml|yml))\b"
)


def _story_text(story: UserStory) -> str:
    return "\n".join([story.description or "", story.notes or "", *story.acceptance_criteria])


def extract_file_paths(text: str) -> Set[str]:
    return set(_FILE_PATH_RE.findall(text))


def analyze_dependencies(stories: List[UserStory]) -> Dict[str, List[str]]:
    """Map each story id to the ids of other stories it references.

    References to itself or to ids outside ``stories`` are ignored.
    """
    known = {s.id for s in stories}
    deps: Dict[str, List[str]] = {}
    for story in stories:
        refs: List[str] = []
        for ref in _STORY_ID_RE.findall(_story_text(story)):
            if ref != story.id and ref in known and ref not in refs:
                refs.append(ref)
        deps[story.id] = refs
    return deps


def partition_for_parallel(
    stories: List[UserStory], max_workers: int, deps: Dict[str, List[str]]
) -> List[List[UserStory]]:
    """Group stories into batches that can run concurrently.

    A story enters a batch once all its dependencies sit in earlier
    batches. Batches hold at most ``max_workers`` stories. Stories caught in
    a dependency cycle go into trailing batches in their original order.
    """
    workers = max(1, max_workers)
    remaining = list(stories)
    placed: Set[str] = set()
    batches: List[List[UserStory]] = []

    while remaining:
        batch = []
        for story in remaining:
            if len(batch) >= workers:
                break
            if all(dep in placed for dep in deps.get(story.id, [])):
                batch.append(story)
        if not batch:
            for i in range(0, len(remaining), workers):
                batches.append(remaining[i : i + workers])
            break
        batch_ids = {s.id for s in batch}
        remaining = [s for s in remaining if s.id not in batch_ids]
        placed |= batch_ids
        batches.append(batch)

    return batches


def detect_file_conflicts(a: UserStory, b: UserStory) -> bool:
    """True when two stories mention more than one file path in common."""
    return len(extract_file_paths(_story_text(a)) & extract_file_paths(_story_text(b))) > 1


def build_parallel_batches(stories: List[UserStory], max_workers: int) -> List[List[UserStory]]:
    """Partition stories by dependency, then split out file conflicts.

    Within a batch, a story that conflicts with an earlier one is moved
    into its own batch directly after the batch.
    """
    if not stories:
        return []
    batches = []
    for batch in partition_for_parallel(stories, max_workers, analyze_dependencies(stories)):
        deferred = set()
        for i in range(len(batch)):
            for j in range(i + 1, len(batch)):
                if detect_file_conflicts(batch[i], batch[j]):
                    deferred.add(j)
        batches.append([s for i, s in enumerate(batch) if i not in deferred])
        batches.extend([batch[i]] for i in sorted(deferred))
    return batches


__all__ = [
    "extract_file_paths",
    "analyze_dependencies",
    "partition_for_parallel",
    "detect_file_conflicts",
    "build_parallel_batches",
]
