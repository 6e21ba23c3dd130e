from pathlib import Path

import pytest

from governance import PathViolation, PathViolationError, canonicalize_path, resolve_workspace_path


def test_relative_path_resolves_under_root(tmp_path):
    result = canonicalize_path("src/app.py", tmp_path)

    assert result.ok
    assert result.abs_path == tmp_path.resolve() / "src" / "app.py"
    assert result.rel_path == "src/app.py"


def test_dotdot_inside_workspace_is_normalized(tmp_path):
    result = canonicalize_path("src/../README.md", tmp_path)

    assert result.ok
    assert result.rel_path == "README.md"


def test_escape_is_rejected(tmp_path):
    result = canonicalize_path("../outside.txt", tmp_path)

    assert result.violation == PathViolation.OUTSIDE_WORKSPACE


def test_absolute_path_is_rejected(tmp_path):
    result = canonicalize_path(str(tmp_path / "a.txt"), tmp_path)

    assert result.violation == PathViolation.ABSOLUTE_PATH_DENIED


@pytest.mark.parametrize("path", ["", "   ", "."])
def test_empty_path_is_rejected(tmp_path, path):
    assert canonicalize_path(path, tmp_path).violation == PathViolation.EMPTY_PATH


def test_resolve_workspace_path_raises(tmp_path):
    with pytest.raises(PathViolationError) as exc_info:
        resolve_workspace_path("../../etc/passwd", tmp_path)

    assert exc_info.value.violation == PathViolation.OUTSIDE_WORKSPACE
    assert isinstance(exc_info.value, ValueError)


def test_resolve_workspace_path_returns_absolute(tmp_path):
    assert resolve_workspace_path(Path("a/b.txt"), tmp_path) == tmp_path.resolve() / "a" / "b.txt"
