"""
Executor - drives a Plan to completion

Flow (per phase, in order):
    1. Mark phase active, emit progress
    2. Run each non-completed task in declared order
    3. On the first ToolExecutionError:
       - emit error, count the attempt
       - attempts exhausted -> phase failed, PhaseExecutionError (plan aborted)
       - otherwise replan the phase, swap in its tasks, emit plan_updated, retry
    4. Mark phase completed, emit progress

After the last phase exactly one `complete` event summarizes the run.

Only ToolExecutionError drives the retry loop. Anything else (unknown tool,
undecodable replan, failed rollback) marks the phase failed and propagates
unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from protocol.errors import PhaseExecutionError, PlanGenerationError, ToolExecutionError, ToolNotFoundError
from protocol.events import EventSink, EventType, progress_payload
from protocol.plan import (
    FileEditPayload,
    Phase,
    PhaseStatus,
    Plan,
    Task,
    TaskStatus,
    TerminalPayload,
)
from protocol.run_constants import MAX_RETRIES
from protocol.tools import ToolAdapter

from .multi_file import MultiFileEditTransaction

logger = logging.getLogger(__name__)


class Executor:
    """
    Usage:
        executor = Executor(planner, terminal, file_editor, workspace_root)
        await executor.execute_plan(plan, event_sink)
    """

    def __init__(
        self,
        planner,
        terminal: ToolAdapter,
        file_editor: Optional[MultiFileEditTransaction],
        workspace_root: Path,
        max_retries: int = MAX_RETRIES,
    ):
        """
        Args:
            planner: Anything with async `replan_phase(phase, reason) -> Phase`
            terminal: Terminal tool adapter
            file_editor: Multi-file edit transaction (None disables file tasks)
            workspace_root: Root for file edits
            max_retries: Attempts per phase before PhaseExecutionError
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.planner = planner
        self.terminal = terminal
        self.file_editor = file_editor
        self.workspace_root = Path(workspace_root)
        self.max_retries = max_retries

    async def execute_plan(self, plan: Plan, event_sink: EventSink) -> None:
        """
        Execute every phase in order.

        Raises:
            PhaseExecutionError: a phase exhausted its attempts
            PlanGenerationError: replanning produced an undecodable response
            ToolNotFoundError: a task names a tool nobody handles
            TransactionRollbackError: a file edit failed and could not be undone
        """
        logger.info("Executing plan %r (%d phase(s))", plan.goal, len(plan.phases))
        for phase in plan.phases:
            await self.execute_phase(phase, event_sink)

        event_sink.emit(EventType.COMPLETE, {
            "status": "completed",
            "goal": plan.goal,
            "phases": [p.summary() for p in plan.phases],
        })
        logger.info("Plan %r completed", plan.goal)

    async def execute_phase(self, phase: Phase, event_sink: EventSink) -> None:
        phase.status = PhaseStatus.ACTIVE
        event_sink.emit(EventType.PROGRESS, progress_payload(phase.id, phase.name, PhaseStatus.ACTIVE.value))
        logger.info("Starting phase %s (%s)", phase.id, phase.name)

        attempt = 0
        while True:
            current: Optional[Task] = None
            try:
                for task in phase.tasks:
                    if task.status == TaskStatus.COMPLETED:
                        continue
                    current = task
                    self._emit_task_progress(event_sink, phase, task, TaskStatus.RUNNING)
                    await self.execute_task(task, event_sink)
                    self._emit_task_progress(event_sink, phase, task, TaskStatus.COMPLETED)
                break
            except ToolExecutionError as exc:
                last_error = str(exc)
                if current is not None:
                    self._emit_task_progress(event_sink, phase, current, TaskStatus.FAILED)
            except Exception:
                self._fail_phase(phase, event_sink)
                raise

            attempt += 1
            event_sink.emit(EventType.ERROR, {
                "phase_id": phase.id,
                "task_id": current.id if current else None,
                "attempt": attempt,
                "message": f"Task failed: {last_error}",
            })

            if attempt >= self.max_retries:
                self._fail_phase(phase, event_sink)
                logger.error("Phase %s failed after %d attempt(s): %s", phase.id, attempt, last_error)
                raise PhaseExecutionError(phase.id, phase.name, attempt, last_error)

            logger.warning("Phase %s attempt %d/%d failed; replanning", phase.id, attempt, self.max_retries)
            event_sink.emit(
                EventType.THINKING,
                f"Error detected. Replanning phase {phase.name} (attempt {attempt}/{self.max_retries})",
            )
            try:
                new_phase = await self.planner.replan_phase(phase, last_error)
            except Exception:
                self._fail_phase(phase, event_sink)
                raise

            phase.tasks = new_phase.tasks
            event_sink.emit(EventType.PLAN_UPDATED, {
                "phase_id": phase.id,
                "attempt": attempt,
                "tasks": [t.summary() for t in phase.tasks],
            })

        phase.status = PhaseStatus.COMPLETED
        event_sink.emit(EventType.PROGRESS, progress_payload(phase.id, phase.name, PhaseStatus.COMPLETED.value))
        logger.info("Phase %s completed", phase.id)

    async def execute_task(self, task: Task, event_sink: EventSink) -> None:
        """
        Run one task through its tool.

        Raises:
            ToolExecutionError: the tool reported failure
            ToolNotFoundError: no tool handles `task.tool` (never retried)
        """
        task.status = TaskStatus.RUNNING
        event_sink.emit(EventType.THINKING, f"Executing: {task.description}")
        try:
            payload = task.payload
            if isinstance(payload, TerminalPayload):
                await self._run_terminal(payload, event_sink)
            elif isinstance(payload, FileEditPayload):
                await self._run_file_edit(task, payload, event_sink)
            else:
                raise ToolNotFoundError(task.tool, f"task {task.id}")
        except BaseException:
            task.status = TaskStatus.FAILED
            raise
        task.status = TaskStatus.COMPLETED

    async def _run_terminal(self, payload: TerminalPayload, event_sink: EventSink) -> None:
        event_sink.emit(EventType.TOOL_USE, {"tool": "terminal", "input": payload.command})
        result = await self.terminal.execute(payload.command)
        if not result.success:
            raise ToolExecutionError(
                "terminal",
                f"Terminal command failed: {result.error}",
                output=result.output,
            )
        if result.output:
            event_sink.emit(EventType.CHUNK, f"\n$ {payload.command}\n{result.output}\n")

    async def _run_file_edit(self, task: Task, payload: FileEditPayload, event_sink: EventSink) -> None:
        if self.file_editor is None:
            raise ToolNotFoundError("file", "no file editor configured")

        change_spec = payload.description or task.description
        if payload.path and payload.path not in change_spec:
            change_spec = f"{change_spec} (file: {payload.path})"
        event_sink.emit(EventType.TOOL_USE, {"tool": "file", "input": change_spec})

        try:
            edit_plan = await self.file_editor.plan_multi_file_edit(
                change_spec, self.workspace_root, self.workspace_root.name
            )
        except PlanGenerationError as exc:
            raise ToolExecutionError("file", f"File edit planning failed: {exc.reason}") from exc

        result = await asyncio.to_thread(
            self.file_editor.execute_multi_file_edit, edit_plan, self.workspace_root
        )
        if not result.success:
            raise ToolExecutionError("file", f"File operation failed: {result.error}")

        for file in edit_plan.files:
            event_sink.emit(EventType.FILE_CHANGE, {
                "file_path": file.path,
                "change_type": file.action.change_type,
                "diff": file.diff,
            })
        event_sink.emit(EventType.CHUNK, f"\nFile operations completed for: {task.description}\n")

    def _emit_task_progress(self, event_sink: EventSink, phase: Phase, task: Task, status: TaskStatus) -> None:
        event_sink.emit(
            EventType.PROGRESS,
            progress_payload(phase.id, phase.name, status.value, task.id, task.description),
        )

    def _fail_phase(self, phase: Phase, event_sink: EventSink) -> None:
        phase.status = PhaseStatus.FAILED
        event_sink.emit(EventType.PROGRESS, progress_payload(phase.id, phase.name, PhaseStatus.FAILED.value))
