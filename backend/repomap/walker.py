# backend/repomap/walker.py
import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional
from uuid import uuid4

from .errors import WalkError

logger = logging.getLogger(__name__)

HIDDEN_PREFIX = "."

# version control metadata, dependency caches, bytecode caches
IGNORED_NAMES: FrozenSet[str] = frozenset({".git", "node_modules", "__pycache__"})


@dataclass
class WalkedNode:
    id: str
    relative_path: str
    name: str
    extension: Optional[str]
    parent_id: Optional[str]
    is_directory: bool
    depth: int
    size_bytes: int


@dataclass
class WalkResult:
    nodes: List[WalkedNode] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # relative paths

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def file_extension(name: str) -> Optional[str]:
    """Text after the last dot, or None ("Makefile", "notes.")."""
    ext = os.path.splitext(name)[1]
    return ext[1:] or None


class TreeWalker:
    """
    Depth-first enumeration of a workspace into flat node descriptors.

    Uses an explicit stack of (directory, relative path, parent id, depth)
    frames instead of recursion. Entries of each directory are sorted by
    name and pushed in reverse, so output is parent-first and deterministic.
    """

    def __init__(self, ignored_names: FrozenSet[str] = IGNORED_NAMES):
        self.ignored_names = ignored_names

    def should_skip(self, name: str) -> bool:
        return name.startswith(HIDDEN_PREFIX) or name in self.ignored_names

    def walk(self, root_path) -> WalkResult:
        root_path = os.fspath(root_path)
        try:
            root_entries = self._list_dir(root_path)
        except OSError as e:
            raise WalkError(f"Failed to read workspace root {root_path}: {e}") from e

        result = WalkResult()
        # each frame: (sorted entries still to emit, reversed), parent rel path, parent id, depth
        stack = [(list(reversed(root_entries)), "", None, 0)]

        while stack:
            pending, parent_rel, parent_id, depth = stack[-1]
            if not pending:
                stack.pop()
                continue
            entry = pending.pop()
            rel = f"{parent_rel}/{entry.name}" if parent_rel else entry.name

            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                if not is_dir and entry.is_symlink() and entry.is_dir():
                    # never followed, and not a file either
                    logger.warning("skipping link to directory %s", rel)
                    result.skipped.append(rel)
                    continue
                size = 0 if is_dir else entry.stat().st_size
            except OSError as e:
                logger.warning("skipping unreadable entry %s: %s", rel, e)
                result.skipped.append(rel)
                continue

            node = WalkedNode(
                id=str(uuid4()),
                relative_path=rel,
                name=entry.name,
                extension=None if is_dir else file_extension(entry.name),
                parent_id=parent_id,
                is_directory=is_dir,
                depth=depth,
                size_bytes=size,
            )
            result.nodes.append(node)

            if is_dir:
                try:
                    children = self._list_dir(entry.path)
                except OSError as e:
                    logger.warning("skipping unreadable directory contents %s: %s", rel, e)
                    result.skipped.append(rel)
                    continue
                stack.append((list(reversed(children)), rel, node.id, depth + 1))

        return result

    def _list_dir(self, path: str):
        with os.scandir(path) as it:
            entries = [e for e in it if not self.should_skip(e.name)]
        entries.sort(key=lambda e: e.name)
        return entries
