"""
Multi-File Edit Transaction - plan and atomically apply edits across files

Plan:
    1. Candidate files from WorkspaceSearch, trimmed by TokenBudgetSelector
    2. LLM describes the edit as {reasoning, files: [{path, action, changes}]}
    3. Each entry is materialized into a FileDiff:
       - create: new content generated
       - modify: original read, new content generated; missing file -> create
       - delete: original read for the diff; missing file -> dropped

Execute:
    All writes and deletes run inside one FileTransaction. Any failure rolls
    every touched path back to its captured state before returning.
"""

from __future__ import annotations

import asyncio
import difflib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from governance.path_utils import canonicalize_path
from planner.decoding import decode_json_object
from protocol.edits import EditAction, EditSpec, EditSpecEntry, FileDiff, FileEditPlan
from protocol.errors import PlanGenerationError, TransactionStateError
from runtime.llm.base import BaseLLM

from .context_provider import ContextFile, TokenBudgetSelector, WorkspaceSearch
from .transaction import FileTransaction

logger = logging.getLogger(__name__)

EDITOR_SYSTEM = "You are an expert software engineer editing a repository."

EDIT_PLAN_PROMPT = """Given the task and relevant files, plan the file changes.

Task: {task}

Relevant files:
{context}

Return a JSON object with this exact structure:
{{
  "reasoning": "Why these changes are needed",
  "files": [
    {{"path": "relative/path/to/file.py", "action": "create" | "modify" | "delete", "changes": "Detailed description of the change"}}
  ]
}}

Paths are relative to the repository root. Return ONLY the JSON object."""

CREATE_FILE_PROMPT = """Generate the complete content for a new file.

File: {path}
Instructions: {changes}

Return ONLY the file content, no explanations."""

MODIFY_FILE_PROMPT = """Modify the file below according to the instructions. Return the COMPLETE modified file.

File: {path}

Original content:
{original}

Instructions: {changes}

Return ONLY the complete modified file content, no explanations."""


@dataclass
class TransactionResult:
    success: bool
    error: Optional[str] = None
    paths: List[str] = field(default_factory=list)


def unified_diff(original: str, modified: str, path: str) -> str:
    lines = difflib.unified_diff(
        original.splitlines(keepends=True),
        modified.splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
    )
    return "".join(lines)


def strip_code_fence(text: str) -> str:
    """Drop a single fence wrapping the whole response, if present."""
    stripped = text.strip()
    if not stripped.startswith("```") or not stripped.endswith("```") or stripped.count("\n") < 1:
        return text
    body = stripped[3:-3]
    first_newline = body.find("\n")
    body = body[first_newline + 1:]
    return body if body.endswith("\n") else body + "\n"


def _read_original(abs_path: Path, rel_path: str) -> Optional[str]:
    """Current UTF-8 text of an edit target, or None when it does not exist."""
    try:
        return abs_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        raise PlanGenerationError(f"cannot read {rel_path}: {exc}") from exc


class MultiFileEditTransaction:
    def __init__(
        self,
        llm: BaseLLM,
        search: Optional[WorkspaceSearch] = None,
        selector: Optional[TokenBudgetSelector] = None,
        max_context_files: int = 5,
        preview_chars: int = 500,
    ):
        self.llm = llm
        self.search = search or WorkspaceSearch()
        self.selector = selector or TokenBudgetSelector()
        self.max_context_files = max_context_files
        self.preview_chars = preview_chars

    async def plan_multi_file_edit(
        self,
        change_spec: str,
        workspace_root: Path,
        context_id: Optional[str] = None,
    ) -> FileEditPlan:
        """
        Build a FileEditPlan for `change_spec`.

        Raises:
            PlanGenerationError: the edit description does not decode, or
                names a path outside the workspace, or a target cannot be read
        """
        root = Path(workspace_root).resolve()
        context_files = await asyncio.to_thread(self._select_context, change_spec, root)
        logger.info(
            "Planning edit for %r with %d context file(s) (context=%s)",
            change_spec, len(context_files), context_id or root.name,
        )

        spec = await self._generate_edit_spec(change_spec, context_files)

        diffs: List[FileDiff] = []
        for entry in spec.files:
            diff = await self._materialize(entry, root)
            if diff is not None:
                diffs.append(diff)

        return FileEditPlan(task=change_spec, files=diffs, reasoning=spec.reasoning)

    def execute_multi_file_edit(self, plan: FileEditPlan, workspace_root: Path) -> TransactionResult:
        """
        Apply every change of `plan` or none of them.

        Returns:
            TransactionResult(success=False, error=...) after a clean rollback

        Raises:
            TransactionRollbackError: a write failed and the rollback failed too
        """
        try:
            with FileTransaction(workspace_root) as tx:
                for file in plan.files:
                    tx.snapshot(file.path)
                for file in plan.files:
                    if file.action == EditAction.DELETE:
                        tx.delete(file.path)
                    else:
                        tx.write_text(file.path, file.new_content)
                paths = tx.touched_paths
                tx.commit()
        except (OSError, ValueError, TransactionStateError) as exc:
            logger.warning("Multi-file edit %r rolled back: %s", plan.task, exc)
            return TransactionResult(success=False, error=str(exc))

        return TransactionResult(success=True, paths=paths)

    # ---- planning internals ----

    def _select_context(self, change_spec: str, root: Path) -> List[ContextFile]:
        candidates = self.search.search(change_spec, root, limit=self.max_context_files * 2)
        return self.selector.select_context(candidates)[: self.max_context_files]

    async def _generate_edit_spec(self, change_spec: str, context_files: List[ContextFile]) -> EditSpec:
        context = "\n\n".join(
            f"=== {f.path} ===\n{f.content[: self.preview_chars]}" for f in context_files
        ) or "(none)"
        raw = await self._generate(EDIT_PLAN_PROMPT.format(task=change_spec, context=context))

        obj = decode_json_object(raw)
        if not obj.ok:
            raise PlanGenerationError(f"edit plan: {obj.error}", raw=raw)
        try:
            return EditSpec.model_validate(obj.value)
        except ValidationError as exc:
            raise PlanGenerationError(f"edit plan schema mismatch: {exc.errors()[0]['msg']}", raw=raw) from exc

    async def _materialize(self, entry: EditSpecEntry, root: Path) -> Optional[FileDiff]:
        canonical = canonicalize_path(entry.path, root)
        if canonical.violation is not None:
            raise PlanGenerationError(f"edit plan names an unusable path: {canonical.violation.value}: {entry.path}")
        rel_path = canonical.rel_path
        abs_path = canonical.abs_path

        action = entry.action
        original = ""
        new_content = ""

        if action == EditAction.MODIFY:
            original = _read_original(abs_path, rel_path)
            if original is None:
                logger.info("Modify target %s is missing; creating it instead", rel_path)
                action = EditAction.CREATE
                original = ""

        if action == EditAction.CREATE:
            new_content = await self._generate(CREATE_FILE_PROMPT.format(path=rel_path, changes=entry.changes))
        elif action == EditAction.MODIFY:
            new_content = await self._generate(
                MODIFY_FILE_PROMPT.format(path=rel_path, original=original, changes=entry.changes)
            )
        else:
            original = _read_original(abs_path, rel_path)
            if original is None:
                logger.info("Delete target %s is already absent; dropping it", rel_path)
                return None

        if action != EditAction.DELETE:
            new_content = strip_code_fence(new_content)

        return FileDiff(
            path=rel_path,
            action=action,
            original_content=original,
            new_content=new_content,
            diff=unified_diff(original, new_content, rel_path),
        )

    async def _generate(self, prompt: str) -> str:
        try:
            return await self.llm.generate(prompt, system=EDITOR_SYSTEM)
        except Exception as exc:
            raise PlanGenerationError(f"generation service failed: {exc}") from exc
