"""
Path Utilities - canonical path handling for workspace writes

Every path an edit or command touches is resolved against the workspace root:
- Relative paths only (absolute and UNC paths are denied)
- `..` is resolved, then the result must stay under workspace_root
- Separators are normalized for display and matching
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class PathViolation(Enum):
    """Path boundary violation reasons."""
    OUTSIDE_WORKSPACE = "outside_workspace"
    ABSOLUTE_PATH_DENIED = "absolute_path_denied"
    UNC_PATH_DENIED = "unc_path_denied"
    EMPTY_PATH = "empty_path"


@dataclass
class CanonicalPathResult:
    abs_path: Path
    rel_path: str  # forward slashes, relative to workspace_root
    violation: Optional[PathViolation] = None

    @property
    def ok(self) -> bool:
        return self.violation is None


class PathViolationError(ValueError):
    def __init__(self, path: str, violation: PathViolation):
        self.path = path
        self.violation = violation
        super().__init__(f"{violation.value}: {path}")


def canonicalize_path(path: str | Path, workspace_root: Path) -> CanonicalPathResult:
    """
    Resolve `path` under `workspace_root` and report boundary violations.

    Args:
        path: Path relative to the workspace
        workspace_root: Workspace root

    Returns:
        CanonicalPathResult; `violation` is set when the path is unusable
    """
    root = Path(workspace_root).resolve()
    raw = str(path).strip()
    if not raw:
        return CanonicalPathResult(abs_path=root, rel_path="", violation=PathViolation.EMPTY_PATH)

    path_obj = Path(raw)
    if path_obj.is_absolute():
        violation = PathViolation.ABSOLUTE_PATH_DENIED
        if platform.system() == "Windows" and raw.startswith("\\\\"):
            violation = PathViolation.UNC_PATH_DENIED
        return CanonicalPathResult(abs_path=path_obj, rel_path=raw, violation=violation)

    abs_path = (root / path_obj).resolve(strict=False)
    try:
        rel = abs_path.relative_to(root)
    except ValueError:
        return CanonicalPathResult(
            abs_path=abs_path, rel_path=raw, violation=PathViolation.OUTSIDE_WORKSPACE
        )

    if str(rel) == ".":
        return CanonicalPathResult(abs_path=abs_path, rel_path="", violation=PathViolation.EMPTY_PATH)

    rel_path = str(rel).replace(os.sep, "/")
    return CanonicalPathResult(abs_path=abs_path, rel_path=rel_path)


def resolve_workspace_path(path: str | Path, workspace_root: Path) -> Path:
    """Absolute path for `path` under the workspace; raises PathViolationError otherwise."""
    result = canonicalize_path(path, workspace_root)
    if result.violation is not None:
        raise PathViolationError(str(path), result.violation)
    return result.abs_path


def is_within(path: Path, root: Path) -> bool:
    try:
        Path(path).resolve().relative_to(Path(root).resolve())
        return True
    except ValueError:
        return False
