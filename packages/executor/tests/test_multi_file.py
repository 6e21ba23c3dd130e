"""
Tests for MultiFileEditTransaction

Validates:
- Planning materializes create / modify / delete entries with diffs
- modify of a missing file falls back to create
- delete of a missing file is dropped
- Undecodable or escaping edit plans, and unreadable targets, raise PlanGenerationError
- Workspace search runs in a worker thread
- Execution is all-or-nothing: a failing write rolls back earlier creates
"""

import asyncio
import json
import threading

import pytest

from executor import MultiFileEditTransaction, WorkspaceSearch
from protocol import EditAction, FileDiff, FileEditPlan, PlanGenerationError
from runtime.llm import ScriptedLLM


def _spec(*files, reasoning="because"):
    return json.dumps({"reasoning": reasoning, "files": list(files)})


# ==================== Planning ====================

def test_plan_materializes_entries(temp_workspace):
    (temp_workspace / "app.py").write_text("print('a')\n", encoding="utf-8")
    (temp_workspace / "legacy.py").write_text("x = 1\n", encoding="utf-8")
    llm = ScriptedLLM([
        _spec(
            {"path": "app.py", "action": "modify", "changes": "print b"},
            {"path": "util.py", "action": "create", "changes": "helper"},
            {"path": "legacy.py", "action": "delete"},
        ),
        "print('b')\n",
        "```python\ndef helper():\n    return 1\n```",
    ])

    plan = asyncio.run(MultiFileEditTransaction(llm).plan_multi_file_edit("refactor app", temp_workspace, "demo"))

    assert plan.task == "refactor app"
    assert plan.reasoning == "because"
    assert [(f.path, f.action) for f in plan.files] == [
        ("app.py", EditAction.MODIFY),
        ("util.py", EditAction.CREATE),
        ("legacy.py", EditAction.DELETE),
    ]

    modify, create, delete = plan.files
    assert modify.original_content == "print('a')\n"
    assert modify.new_content == "print('b')\n"
    assert "-print('a')" in modify.diff and "+print('b')" in modify.diff
    assert create.new_content == "def helper():\n    return 1\n"
    assert delete.original_content == "x = 1\n"
    assert delete.new_content == ""

    # Nothing was written during planning
    assert (temp_workspace / "app.py").read_text(encoding="utf-8") == "print('a')\n"
    assert not (temp_workspace / "util.py").exists()


def test_modify_missing_file_becomes_create(temp_workspace):
    llm = ScriptedLLM([_spec({"path": "src/new.py", "action": "modify", "changes": "add main"}), "def main(): ...\n"])

    plan = asyncio.run(MultiFileEditTransaction(llm).plan_multi_file_edit("add main", temp_workspace))

    assert plan.files[0].action == EditAction.CREATE
    assert plan.files[0].original_content == ""
    assert "Modify the file" not in llm.prompts[1]


def test_delete_missing_file_is_dropped(temp_workspace):
    llm = ScriptedLLM([_spec({"path": "nope.txt", "action": "delete"})])

    plan = asyncio.run(MultiFileEditTransaction(llm).plan_multi_file_edit("cleanup", temp_workspace))

    assert plan.files == []


def test_context_files_reach_the_prompt(temp_workspace):
    (temp_workspace / "billing.py").write_text("def invoice_total():\n    return 0\n", encoding="utf-8")
    llm = ScriptedLLM([_spec()])

    asyncio.run(MultiFileEditTransaction(llm).plan_multi_file_edit("fix billing rounding", temp_workspace))

    assert "=== billing.py ===" in llm.prompts[0]


def test_workspace_search_runs_off_the_event_loop_thread(temp_workspace):
    class RecordingSearch(WorkspaceSearch):
        def __init__(self):
            super().__init__()
            self.threads = []

        def search(self, query, workspace_root, limit=10):
            self.threads.append(threading.get_ident())
            return super().search(query, workspace_root, limit)

    search = RecordingSearch()
    editor = MultiFileEditTransaction(ScriptedLLM([_spec()]), search=search)

    asyncio.run(editor.plan_multi_file_edit("fix billing", temp_workspace))

    assert len(search.threads) == 1
    assert search.threads[0] != threading.get_ident()


def test_unreadable_target_raises(temp_workspace):
    (temp_workspace / "logo.py").write_bytes(b"\xff\xfe\x00")
    llm = ScriptedLLM([_spec({"path": "logo.py", "action": "modify", "changes": "x"})])

    with pytest.raises(PlanGenerationError, match="cannot read logo.py"):
        asyncio.run(MultiFileEditTransaction(llm).plan_multi_file_edit("tweak logo", temp_workspace))


@pytest.mark.parametrize(
    "reply",
    [
        "I would change app.py",
        json.dumps({"reasoning": "x"}),
        _spec({"path": "a.py", "action": "rename"}),
        _spec({"path": "../outside.py", "action": "create", "changes": "x"}),
    ],
)
def test_bad_edit_plans_raise(temp_workspace, reply):
    llm = ScriptedLLM([reply], fallback="content")

    with pytest.raises(PlanGenerationError):
        asyncio.run(MultiFileEditTransaction(llm).plan_multi_file_edit("x", temp_workspace))


# ==================== Execution ====================

def test_execute_applies_all(temp_workspace):
    (temp_workspace / "a.txt").write_text("old\n", encoding="utf-8")
    (temp_workspace / "b.txt").write_text("bye\n", encoding="utf-8")
    plan = FileEditPlan(task="t", files=[
        FileDiff(path="a.txt", action=EditAction.MODIFY, original_content="old\n", new_content="new\n"),
        FileDiff(path="c/d.txt", action=EditAction.CREATE, new_content="d\n"),
        FileDiff(path="b.txt", action=EditAction.DELETE, original_content="bye\n"),
    ])

    result = MultiFileEditTransaction(ScriptedLLM()).execute_multi_file_edit(plan, temp_workspace)

    assert result.success is True
    assert result.error is None
    assert result.paths == ["a.txt", "c/d.txt", "b.txt"]
    assert (temp_workspace / "a.txt").read_text(encoding="utf-8") == "new\n"
    assert (temp_workspace / "c" / "d.txt").read_text(encoding="utf-8") == "d\n"
    assert not (temp_workspace / "b.txt").exists()


def test_failing_write_rolls_back_earlier_create(temp_workspace):
    """create succeeds, then a modify whose write throws: nothing remains."""
    (temp_workspace / "blocker").write_text("a regular file, not a directory", encoding="utf-8")
    (temp_workspace / "existing.txt").write_text("before\n", encoding="utf-8")
    plan = FileEditPlan(task="t", files=[
        FileDiff(path="created.txt", action=EditAction.CREATE, new_content="hello\n"),
        FileDiff(path="existing.txt", action=EditAction.MODIFY, original_content="before\n", new_content="after\n"),
        FileDiff(path="blocker/inner.txt", action=EditAction.MODIFY, new_content="cannot be written\n"),
    ])

    result = MultiFileEditTransaction(ScriptedLLM()).execute_multi_file_edit(plan, temp_workspace)

    assert result.success is False
    assert result.error
    assert not (temp_workspace / "created.txt").exists()
    assert (temp_workspace / "existing.txt").read_text(encoding="utf-8") == "before\n"
    assert (temp_workspace / "blocker").read_text(encoding="utf-8") == "a regular file, not a directory"


def test_execute_rejects_escaping_path(temp_workspace):
    plan = FileEditPlan(task="t", files=[
        FileDiff(path="ok.txt", action=EditAction.CREATE, new_content="x"),
        FileDiff(path="../escape.txt", action=EditAction.CREATE, new_content="x"),
    ])

    result = MultiFileEditTransaction(ScriptedLLM()).execute_multi_file_edit(plan, temp_workspace)

    assert result.success is False
    assert not (temp_workspace / "ok.txt").exists()
