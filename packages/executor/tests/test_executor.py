"""
Tests for Executor

Validates:
- End-to-end single terminal task
- Bounded retry/replan loop and PhaseExecutionError
- Later phases never run after a failed phase
- Unknown tools fail immediately without replanning
- Replan failures propagate unchanged
- File tasks emit one file_change per affected path
- Unreadable edit targets fail the task and drive the retry loop
"""

import asyncio
import json

import pytest

from executor import Executor, MultiFileEditTransaction
from protocol import (
    EventType,
    MAX_RETRIES,
    Phase,
    PhaseExecutionError,
    PhaseStatus,
    Plan,
    PlanGenerationError,
    Task,
    TaskStatus,
    ToolNotFoundError,
    ToolResult,
)
from runtime.llm import ScriptedLLM


def _plan(*phases):
    return Plan(goal="demo", reasoning="test", phases=list(phases))


def _terminal_phase(phase_id, *commands):
    return Phase(
        id=phase_id,
        name=f"Phase {phase_id}",
        tasks=[
            Task(id=f"{phase_id}-t{i}", description=f"run {c}", tool="terminal", command=c)
            for i, c in enumerate(commands)
        ],
    )


def _same_tasks(phase, reason):
    return Phase(id=phase.id, name=phase.name, tasks=[
        Task(id=t.id, description=t.description, payload=t.payload) for t in phase.tasks
    ])


def _never_replan(phase, reason):
    raise AssertionError("replan_phase must not be called")


# ==================== End-to-end ====================

def test_single_terminal_task_completes(temp_workspace, sink, stub_terminal, fake_planner):
    """One phase, one `node -v` task, succeeding adapter."""
    plan = _plan(_terminal_phase("p1", "node -v"))
    terminal = stub_terminal()
    executor = Executor(fake_planner(_never_replan), terminal, None, temp_workspace)

    asyncio.run(executor.execute_plan(plan, sink))

    assert plan.phases[0].status == PhaseStatus.COMPLETED
    assert plan.phases[0].tasks[0].status == TaskStatus.COMPLETED
    assert terminal.commands == ["node -v"]

    completions = sink.payloads(EventType.COMPLETE)
    assert len(completions) == 1
    assert completions[0]["goal"] == "demo"
    assert completions[0]["phases"] == [{"id": "p1", "name": "Phase p1", "status": "completed"}]


def test_progress_events_in_order(temp_workspace, sink, stub_terminal, fake_planner):
    plan = _plan(_terminal_phase("p1", "ls", "pwd"))
    executor = Executor(fake_planner(_never_replan), stub_terminal(), None, temp_workspace)

    asyncio.run(executor.execute_plan(plan, sink))

    statuses = [(p["task_id"], p["status"]) for p in sink.payloads(EventType.PROGRESS)]
    assert statuses == [
        (None, "active"),
        ("p1-t0", "running"),
        ("p1-t0", "completed"),
        ("p1-t1", "running"),
        ("p1-t1", "completed"),
        (None, "completed"),
    ]
    assert sink.payloads(EventType.CHUNK)[0] == "\n$ ls\nran ls\n"


def test_tasks_already_completed_are_skipped(temp_workspace, sink, stub_terminal, fake_planner):
    phase = _terminal_phase("p1", "ls", "pwd")
    phase.tasks[0].status = TaskStatus.COMPLETED
    terminal = stub_terminal()

    asyncio.run(Executor(fake_planner(_never_replan), terminal, None, temp_workspace).execute_plan(_plan(phase), sink))

    assert terminal.commands == ["pwd"]


# ==================== Retry / replan ====================

def test_failing_phase_replans_then_aborts_plan(temp_workspace, sink, stub_terminal, fake_planner):
    """Phase 1 always fails: MAX_RETRIES - 1 replans, then PhaseExecutionError; phase 2 never runs."""
    plan = _plan(_terminal_phase("p1", "npm test"), _terminal_phase("p2", "echo never"))
    terminal = stub_terminal(
        lambda command: ToolResult.fail("exit 1", output="1 failing") if command == "npm test" else ToolResult.ok()
    )
    planner = fake_planner(_same_tasks)
    executor = Executor(planner, terminal, None, temp_workspace)

    with pytest.raises(PhaseExecutionError) as exc_info:
        asyncio.run(executor.execute_plan(plan, sink))

    assert len(planner.calls) == MAX_RETRIES - 1
    assert "echo never" not in terminal.commands
    assert terminal.commands == ["npm test"] * MAX_RETRIES
    assert plan.phases[0].status == PhaseStatus.FAILED
    assert plan.phases[1].status == PhaseStatus.PENDING
    assert all(t.status == TaskStatus.PENDING for t in plan.phases[1].tasks)

    error = exc_info.value
    assert error.attempts == MAX_RETRIES
    assert "exit 1" in error.last_error
    assert f"after {MAX_RETRIES} attempts" in str(error)

    assert len(sink.payloads(EventType.ERROR)) == MAX_RETRIES
    assert len(sink.payloads(EventType.PLAN_UPDATED)) == MAX_RETRIES - 1
    assert sink.payloads(EventType.COMPLETE) == []
    assert sink.payloads(EventType.PROGRESS)[-1]["status"] == "failed"


def test_replan_recovers(temp_workspace, sink, stub_terminal, fake_planner):
    """Replanned tasks replace the failed ones and the phase completes."""
    plan = _plan(_terminal_phase("p1", "npm instal"), _terminal_phase("p2", "ls"))
    terminal = stub_terminal(
        lambda command: ToolResult.fail("unknown command") if command == "npm instal" else ToolResult.ok()
    )
    planner = fake_planner(lambda phase, reason: _terminal_phase(phase.id, "npm install"))

    asyncio.run(Executor(planner, terminal, None, temp_workspace).execute_plan(plan, sink))

    assert terminal.commands == ["npm instal", "npm install", "ls"]
    assert planner.calls[0][0] == "p1"
    assert "unknown command" in planner.calls[0][1]
    assert [p.status for p in plan.phases] == [PhaseStatus.COMPLETED, PhaseStatus.COMPLETED]
    assert plan.phases[0].tasks[0].payload.command == "npm install"
    assert plan.goal == "demo"

    updated = sink.payloads(EventType.PLAN_UPDATED)[0]
    assert updated["phase_id"] == "p1"
    assert updated["tasks"][0]["status"] == "pending"


def test_max_retries_one_never_replans(temp_workspace, sink, stub_terminal, fake_planner):
    plan = _plan(_terminal_phase("p1", "false"))
    terminal = stub_terminal(lambda command: ToolResult.fail("nope"))
    planner = fake_planner(_same_tasks)

    with pytest.raises(PhaseExecutionError):
        asyncio.run(Executor(planner, terminal, None, temp_workspace, max_retries=1).execute_plan(plan, sink))

    assert planner.calls == []


def test_replan_generation_error_propagates(temp_workspace, sink, stub_terminal, fake_planner):
    def broken(phase, reason):
        raise PlanGenerationError("invalid JSON")

    plan = _plan(_terminal_phase("p1", "false"))
    terminal = stub_terminal(lambda command: ToolResult.fail("nope"))

    with pytest.raises(PlanGenerationError):
        asyncio.run(Executor(fake_planner(broken), terminal, None, temp_workspace).execute_plan(plan, sink))

    assert plan.phases[0].status == PhaseStatus.FAILED


# ==================== Dispatch ====================

def test_unknown_tool_is_not_retried(temp_workspace, sink, stub_terminal, fake_planner):
    """A missing tool fails the phase at once."""
    phase = Phase(id="p1", name="Browse", tasks=[
        Task(id="t1", description="open page", tool="browser", url="http://localhost:3000"),
    ])
    planner = fake_planner(_never_replan)

    with pytest.raises(ToolNotFoundError) as exc_info:
        asyncio.run(Executor(planner, stub_terminal(), None, temp_workspace).execute_plan(_plan(phase), sink))

    assert exc_info.value.name == "browser"
    assert planner.calls == []
    assert phase.status == PhaseStatus.FAILED
    assert phase.tasks[0].status == TaskStatus.FAILED


def test_file_task_without_editor_is_tool_not_found(temp_workspace, sink, stub_terminal, fake_planner):
    phase = Phase(id="p1", name="Edit", tasks=[Task(id="t1", description="create a.txt", tool="file")])

    with pytest.raises(ToolNotFoundError):
        asyncio.run(Executor(fake_planner(_never_replan), stub_terminal(), None, temp_workspace).execute_plan(_plan(phase), sink))


def test_file_task_emits_file_changes(temp_workspace, sink, stub_terminal, fake_planner):
    (temp_workspace / "old.txt").write_text("bye\n", encoding="utf-8")
    (temp_workspace / "README.md").write_text("# demo\n", encoding="utf-8")
    llm = ScriptedLLM([
        json.dumps({
            "reasoning": "split docs",
            "files": [
                {"path": "docs/guide.md", "action": "create", "changes": "write a guide"},
                {"path": "README.md", "action": "modify", "changes": "link the guide"},
                {"path": "old.txt", "action": "delete", "changes": ""},
            ],
        }),
        "# Guide\n",
        "# demo\nSee docs/guide.md\n",
    ])
    phase = Phase(id="p1", name="Docs", tasks=[Task(id="t1", description="add a guide", tool="file")])
    editor = MultiFileEditTransaction(llm)

    asyncio.run(Executor(fake_planner(_never_replan), stub_terminal(), editor, temp_workspace).execute_plan(_plan(phase), sink))

    changes = [(c["file_path"], c["change_type"]) for c in sink.payloads(EventType.FILE_CHANGE)]
    assert changes == [("docs/guide.md", "create"), ("README.md", "update"), ("old.txt", "delete")]
    assert (temp_workspace / "docs" / "guide.md").read_text(encoding="utf-8") == "# Guide\n"
    assert not (temp_workspace / "old.txt").exists()
    assert phase.status == PhaseStatus.COMPLETED


def test_undecodable_edit_plan_drives_retry(temp_workspace, sink, stub_terminal, fake_planner):
    llm = ScriptedLLM(["not json"], fallback="still not json")
    phase = Phase(id="p1", name="Edit", tasks=[Task(id="t1", description="create a.txt", tool="file")])
    planner = fake_planner(_same_tasks)

    with pytest.raises(PhaseExecutionError) as exc_info:
        asyncio.run(
            Executor(planner, stub_terminal(), MultiFileEditTransaction(llm), temp_workspace)
            .execute_plan(_plan(phase), sink)
        )

    assert "File edit planning failed" in exc_info.value.last_error
    assert len(planner.calls) == MAX_RETRIES - 1


@pytest.mark.parametrize(
    "action,target",
    [
        ("modify", "logo.py"),
        ("delete", "pkg"),
    ],
)
def test_unreadable_edit_target_drives_retry(temp_workspace, sink, stub_terminal, fake_planner, action, target):
    """Undecodable bytes or a directory in place of a file fail the task, not the run."""
    (temp_workspace / "logo.py").write_bytes(b"\xff\xfe\x00binary")
    (temp_workspace / "pkg").mkdir()
    edit_spec = json.dumps({
        "reasoning": "touch the target",
        "files": [{"path": target, "action": action, "changes": "update it"}],
    })
    llm = ScriptedLLM([], fallback=edit_spec)
    phase = Phase(id="p1", name="Edit", tasks=[Task(id="t1", description=f"{action} {target}", tool="file")])
    planner = fake_planner(_same_tasks)

    with pytest.raises(PhaseExecutionError) as exc_info:
        asyncio.run(
            Executor(planner, stub_terminal(), MultiFileEditTransaction(llm), temp_workspace)
            .execute_plan(_plan(phase), sink)
        )

    assert f"cannot read {target}" in exc_info.value.last_error
    assert len(planner.calls) == MAX_RETRIES - 1
    assert (temp_workspace / "logo.py").read_bytes() == b"\xff\xfe\x00binary"
    assert (temp_workspace / "pkg").is_dir()


def test_invalid_max_retries(temp_workspace, stub_terminal, fake_planner):
    with pytest.raises(ValueError):
        Executor(fake_planner(_never_replan), stub_terminal(), None, temp_workspace, max_retries=0)
