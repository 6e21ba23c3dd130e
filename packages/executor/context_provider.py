"""
Context Provider - candidate discovery and token-budgeted selection

WorkspaceSearch scores workspace text files by keyword overlap with the
change request; TokenBudgetSelector keeps the most relevant ones that fit
the budget, truncating the last large file when enough room is left.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from planner.context import is_ignored

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]{2,}")

TEXT_SUFFIXES = frozenset({
    ".py", ".pyi", ".ts", ".tsx", ".js", ".jsx", ".json", ".md", ".txt", ".toml",
    ".yaml", ".yml", ".cfg", ".ini", ".html", ".css", ".scss", ".sh", ".go", ".rs",
    ".java", ".c", ".h", ".cpp", ".sql",
})


@dataclass
class ContextFile:
    path: str
    content: str
    score: float = 0.0


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def _keywords(text: str) -> set[str]:
    return {w.lower() for w in _WORD_RE.findall(text)}


class WorkspaceSearch:
    def __init__(self, max_file_bytes: int = 200_000):
        self.max_file_bytes = max_file_bytes

    def search(self, query: str, workspace_root: Path, limit: int = 10) -> List[ContextFile]:
        """Return up to `limit` files whose path or content shares words with `query`."""
        root = Path(workspace_root)
        terms = _keywords(query)
        if not terms or not root.is_dir():
            return []

        results: List[ContextFile] = []
        for path in self._iter_files(root):
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            rel = path.relative_to(root).as_posix()
            path_hits = len(terms & _keywords(rel.replace("/", " ").replace(".", " ")))
            content_hits = len(terms & _keywords(content))
            if not path_hits and not content_hits:
                continue
            score = (content_hits + 2 * path_hits) / len(terms)
            results.append(ContextFile(path=rel, content=content, score=score))

        results.sort(key=lambda f: (-f.score, f.path))
        return results[:limit]

    def _iter_files(self, root: Path):
        stack = [root]
        while stack:
            current = stack.pop()
            try:
                entries = list(current.iterdir())
            except OSError:
                continue
            for entry in entries:
                if is_ignored(entry.name) or entry.is_symlink():
                    continue
                if entry.is_dir():
                    stack.append(entry)
                elif entry.suffix.lower() in TEXT_SUFFIXES:
                    try:
                        if entry.stat().st_size <= self.max_file_bytes:
                            yield entry
                    except OSError:
                        continue


class TokenBudgetSelector:
    def __init__(self, budget_tokens: int = 8000, min_truncated_tokens: int = 500):
        self.budget_tokens = budget_tokens
        self.min_truncated_tokens = min_truncated_tokens

    def select_context(self, candidates: Sequence[ContextFile]) -> List[ContextFile]:
        ordered = sorted(candidates, key=lambda f: f.score, reverse=True)
        selected: List[ContextFile] = []
        used = 0

        for candidate in ordered:
            tokens = estimate_tokens(candidate.content)
            if used + tokens <= self.budget_tokens:
                selected.append(candidate)
                used += tokens
                continue

            remaining = self.budget_tokens - used
            if remaining > self.min_truncated_tokens:
                selected.append(ContextFile(
                    path=candidate.path,
                    content=truncate(candidate.content, remaining),
                    score=candidate.score,
                ))
                break

        logger.debug("Selected %d/%d context file(s), ~%d tokens", len(selected), len(ordered), used)
        return selected


def truncate(text: str, limit_tokens: int) -> str:
    tokens = estimate_tokens(text)
    if tokens <= limit_tokens:
        return text
    new_length = int(len(text) * (limit_tokens / tokens))
    return text[:new_length] + "... [truncated]"
