"""
Project Context - lightweight snapshot of the workspace for planning prompts

Collects:
- Files (relative paths, skipping hidden/VCS/dependency/build directories)
- Declared dependencies (package.json, pyproject.toml, requirements.txt)
- A depth-limited tree view
"""

from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

logger = logging.getLogger(__name__)

IGNORED_DIRS = frozenset({
    "node_modules", "dist", "build", "__pycache__", ".git", ".venv", "venv",
    ".mypy_cache", ".pytest_cache", ".tox",
})


def is_ignored(name: str) -> bool:
    return name.startswith(".") or name in IGNORED_DIRS


@dataclass
class ProjectSnapshot:
    root: str
    files: List[str] = field(default_factory=list)
    dependencies: Dict[str, str] = field(default_factory=dict)
    structure: str = ""


class ProjectContext:
    def __init__(self, workspace_root: Path, max_depth: int = 3, max_files: int = 2000):
        self.workspace_root = Path(workspace_root).resolve()
        self.max_depth = max_depth
        self.max_files = max_files

    def analyze(self) -> ProjectSnapshot:
        return ProjectSnapshot(
            root=str(self.workspace_root),
            files=self.list_files(),
            dependencies=self.dependencies(),
            structure=self.tree(),
        )

    def list_files(self) -> List[str]:
        files: List[str] = []
        if not self.workspace_root.is_dir():
            return files
        stack = [self.workspace_root]
        while stack and len(files) < self.max_files:
            current = stack.pop()
            try:
                entries = sorted(current.iterdir(), key=lambda p: p.name, reverse=True)
            except OSError as exc:
                logger.warning("Cannot list %s: %s", current, exc)
                continue
            for entry in entries:
                if is_ignored(entry.name) or entry.is_symlink():
                    continue
                if entry.is_dir():
                    stack.append(entry)
                else:
                    files.append(entry.relative_to(self.workspace_root).as_posix())
        return sorted(files[: self.max_files])

    def dependencies(self) -> Dict[str, str]:
        deps: Dict[str, str] = {}
        deps.update(self._package_json_deps())
        deps.update(self._pyproject_deps())
        deps.update(self._requirements_deps())
        return deps

    def tree(self) -> str:
        lines: List[str] = []
        self._tree_lines(self.workspace_root, "", 0, lines)
        return "\n".join(lines)

    def _tree_lines(self, directory: Path, prefix: str, depth: int, lines: List[str]) -> None:
        if depth > self.max_depth:
            return
        try:
            entries = sorted(
                (e for e in directory.iterdir() if not is_ignored(e.name) and not e.is_symlink()),
                key=lambda p: (not p.is_dir(), p.name),
            )
        except OSError:
            return
        for index, entry in enumerate(entries):
            last = index == len(entries) - 1
            connector = "└── " if last else "├── "
            lines.append(f"{prefix}{connector}{entry.name}{'/' if entry.is_dir() else ''}")
            if entry.is_dir():
                self._tree_lines(entry, prefix + ("    " if last else "│   "), depth + 1, lines)

    def _package_json_deps(self) -> Dict[str, str]:
        path = self.workspace_root / "package.json"
        if not path.exists():
            return {}
        try:
            pkg = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable package.json: %s", exc)
            return {}
        deps: Dict[str, str] = {}
        deps.update(pkg.get("dependencies") or {})
        deps.update(pkg.get("devDependencies") or {})
        return deps

    def _pyproject_deps(self) -> Dict[str, str]:
        path = self.workspace_root / "pyproject.toml"
        if not path.exists():
            return {}
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Unreadable pyproject.toml: %s", exc)
            return {}
        requirements = (data.get("project") or {}).get("dependencies") or []
        return dict(_split_requirement(r) for r in requirements if isinstance(r, str))

    def _requirements_deps(self) -> Dict[str, str]:
        path = self.workspace_root / "requirements.txt"
        if not path.exists():
            return {}
        deps: Dict[str, str] = {}
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.split("#", 1)[0].strip()
            if not line or line.startswith("-"):
                continue
            name, spec = _split_requirement(line)
            deps[name] = spec
        return deps


def _split_requirement(requirement: str) -> tuple[str, str]:
    for index, char in enumerate(requirement):
        if char in "<>=!~;[ ":
            return requirement[:index].strip(), requirement[index:].strip()
    return requirement.strip(), "*"
