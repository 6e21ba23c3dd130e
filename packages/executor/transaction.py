"""
File Transaction - all-or-nothing file mutation with snapshot rollback

Lifecycle:
    begin()  -> acquire the workspace lock
    snapshot / write_text / delete  (any order, each path snapshotted once)
    commit() -> drop snapshots, release lock
    rollback() -> restore snapshots, remove created directories, release lock

Used as a context manager, rollback runs on every exit path that did not
commit (exceptions included). A rollback that itself fails raises
TransactionRollbackError chained to the write error.

Safety:
- Pre-transaction state is captured per path: bytes if the file existed,
  "absent" otherwise (rollback deletes it)
- Writes are atomic (temp file in the same directory + rename)
- One transaction per workspace root at a time within the process
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from governance.path_utils import resolve_workspace_path
from protocol.errors import TransactionRollbackError, TransactionStateError

logger = logging.getLogger(__name__)

_ABSENT = None

_workspace_locks: Dict[str, threading.Lock] = {}
_workspace_locks_guard = threading.Lock()


def _workspace_lock(workspace_root: Path) -> threading.Lock:
    key = os.path.normcase(str(workspace_root))
    with _workspace_locks_guard:
        lock = _workspace_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _workspace_locks[key] = lock
        return lock


class TransactionState(str, Enum):
    NEW = "new"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class FileTransaction:
    """
    Usage:
        with FileTransaction(workspace_root) as tx:
            tx.write_text("src/a.py", "...")
            tx.delete("old.py")
            tx.commit()
    """

    def __init__(self, workspace_root: Path, lock_timeout_s: float = 30.0):
        self.workspace_root = Path(workspace_root).resolve()
        self.lock_timeout_s = lock_timeout_s
        self.state = TransactionState.NEW
        self._lock = _workspace_lock(self.workspace_root)
        self._snapshots: Dict[Path, Optional[bytes]] = {}
        self._order: List[Path] = []
        self._created_dirs: List[Path] = []

    # ---- lifecycle ----

    def begin(self) -> "FileTransaction":
        if self.state != TransactionState.NEW:
            raise TransactionStateError(f"Cannot begin a transaction in state {self.state.value}")
        if not self._lock.acquire(timeout=self.lock_timeout_s):
            raise TransactionStateError(
                f"Workspace {self.workspace_root} is locked by another transaction"
            )
        self.state = TransactionState.ACTIVE
        logger.debug("Transaction started in %s", self.workspace_root)
        return self

    def commit(self) -> None:
        self._require_active("commit")
        count = len(self._order)
        self._snapshots.clear()
        self._order.clear()
        self._created_dirs.clear()
        self.state = TransactionState.COMMITTED
        self._lock.release()
        logger.info("Transaction committed (%d file(s)) in %s", count, self.workspace_root)

    def rollback(self) -> List[Tuple[str, BaseException]]:
        """
        Restore every snapshotted path.

        Returns:
            (path, error) for each path that could not be restored; empty on
            a clean rollback
        """
        self._require_active("rollback")
        failures: List[Tuple[str, BaseException]] = []
        try:
            for path in reversed(self._order):
                try:
                    self._restore(path, self._snapshots[path])
                except OSError as exc:
                    logger.error("Rollback failed for %s: %s", path, exc)
                    failures.append((self._rel(path), exc))

            for directory in reversed(self._created_dirs):
                try:
                    directory.rmdir()
                except OSError:
                    # Not empty or already gone; the files in it were restored above
                    pass
        finally:
            restored = len(self._order) - len(failures)
            self._snapshots.clear()
            self._order.clear()
            self._created_dirs.clear()
            self.state = TransactionState.ROLLED_BACK
            self._lock.release()

        logger.warning("Transaction rolled back (%d file(s) restored) in %s", restored, self.workspace_root)
        return failures

    def __enter__(self) -> "FileTransaction":
        return self.begin()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self.state != TransactionState.ACTIVE:
            return False
        failures = self.rollback()
        if failures:
            original = exc_val if exc_val is not None else TransactionStateError(
                "Transaction left without commit"
            )
            raise TransactionRollbackError(original, failures) from exc_val
        return False

    # ---- operations ----

    @property
    def touched_paths(self) -> List[str]:
        return [self._rel(p) for p in self._order]

    def resolve(self, rel_path: str) -> Path:
        return resolve_workspace_path(rel_path, self.workspace_root)

    def snapshot(self, rel_path: str) -> Path:
        """Capture the pre-transaction state of `rel_path` (first call wins)."""
        self._require_active("snapshot")
        path = self.resolve(rel_path)
        if path not in self._snapshots:
            self._snapshots[path] = path.read_bytes() if path.is_file() else _ABSENT
            self._order.append(path)
        return path

    def write_text(self, rel_path: str, content: str) -> Path:
        path = self.snapshot(rel_path)
        self._make_parents(path.parent)
        _atomic_write(path, content.encode("utf-8"))
        return path

    def delete(self, rel_path: str) -> bool:
        path = self.snapshot(rel_path)
        if not path.exists():
            return False
        path.unlink()
        return True

    # ---- internals ----

    def _require_active(self, operation: str) -> None:
        if self.state != TransactionState.ACTIVE:
            raise TransactionStateError(f"Cannot {operation}: transaction is {self.state.value}")

    def _make_parents(self, directory: Path) -> None:
        missing: List[Path] = []
        current = directory
        while not current.exists() and current != self.workspace_root:
            missing.append(current)
            current = current.parent
        directory.mkdir(parents=True, exist_ok=True)
        self._created_dirs.extend(reversed(missing))

    def _restore(self, path: Path, content: Optional[bytes]) -> None:
        if content is _ABSENT:
            if path.is_file() or path.is_symlink():
                path.unlink()
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(path, content)

    def _rel(self, path: Path) -> str:
        try:
            return path.relative_to(self.workspace_root).as_posix()
        except ValueError:
            return str(path)


def _atomic_write(path: Path, data: bytes) -> None:
    """Write via a temp file in the same directory, then rename over the target."""
    mode = path.stat().st_mode if path.exists() else None
    temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with open(temp_fd, "wb") as f:
            f.write(data)
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        Path(temp_path).unlink(missing_ok=True)
        raise
