"""
Run Supervisor - drives whole runs from goal to a terminal state

Flow (one run):
    idle → planning      Planner.plan_project(goal)
         → executing     Executor.execute_plan(plan)
         → testing       test command (skipped when none is configured)
         ⇄ fixing        failing tests: fix phase planned via replan_phase and executed
         → done | error | cancelled

Each run gets its own RunStateMachine, TerminalTool and Executor and runs in
its own LaneQueue lane, so runs proceed concurrently without sharing plan
state. The RiskGate is shared; cancelling a run denies its pending approvals
before its task is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from executor import Executor, MultiFileEditTransaction, TerminalTool
from governance import RiskClassifier, RiskGateService
from planner import Planner, ProjectContext
from protocol import (
    EventSink,
    EventType,
    LoggingEventSink,
    OrchestrationError,
    Phase,
    Plan,
    RunCancelledError,
    new_run_id,
)
from runtime import OrchestratorConfig, RunLifecycleState, RunStateMachine
from runtime.lane_queue import LaneQueue
from runtime.llm.base import BaseLLM

logger = logging.getLogger(__name__)


@dataclass
class RunRecord:
    run_id: str
    goal: str
    machine: RunStateMachine
    plan: Optional[Plan] = None
    fix_phases: List[Phase] = field(default_factory=list)
    cancel_requested: bool = False
    finished: bool = False


@dataclass
class RunResult:
    run_id: str
    state: RunLifecycleState
    plan: Optional[Plan] = None
    error: Optional[str] = None
    fix_attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == RunLifecycleState.DONE


class RunSupervisor:
    """
    Usage:
        async with RunSupervisor(llm, workspace_root, config, event_sink) as supervisor:
            result = await supervisor.run("add a health endpoint")
    """

    def __init__(
        self,
        llm: BaseLLM,
        workspace_root: Path,
        config: Optional[OrchestratorConfig] = None,
        event_sink: Optional[EventSink] = None,
        risk_gate: Optional[RiskGateService] = None,
        classifier: Optional[RiskClassifier] = None,
    ):
        self.workspace_root = Path(workspace_root).resolve()
        self.config = config or OrchestratorConfig()
        self.event_sink = event_sink or LoggingEventSink()
        self.classifier = classifier or RiskClassifier()
        self.risk_gate = risk_gate or RiskGateService(
            self.event_sink, self.config.approval_timeout_s, self.classifier
        )
        self.planner = Planner(llm, ProjectContext(self.workspace_root))
        self.file_editor = MultiFileEditTransaction(llm)
        self.lanes = LaneQueue(self.config.max_concurrent_runs)
        self._runs: Dict[str, RunRecord] = {}

    # ---- lifecycle ----

    async def __aenter__(self) -> "RunSupervisor":
        self.risk_gate.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    async def close(self) -> None:
        self.risk_gate.stop()
        await self.lanes.close()

    # ---- runs ----

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        return self._runs.get(run_id)

    async def run(self, goal: str, run_id: Optional[str] = None) -> RunResult:
        """
        Drive one run to a terminal state.

        Returns:
            RunResult in state done or error

        Raises:
            RunCancelledError: the run was cancelled through `cancel()`
        """
        run_id = run_id or new_run_id()
        if run_id in self._runs:
            raise ValueError(f"Run {run_id} already exists")
        record = RunRecord(run_id=run_id, goal=goal, machine=RunStateMachine(run_id=run_id))
        self._runs[run_id] = record

        try:
            return await self.lanes.submit(run_id, lambda: self._drive(record))
        except asyncio.CancelledError:
            if record.cancel_requested:
                raise RunCancelledError(run_id, "cancelled by request") from None
            raise
        finally:
            record.finished = True

    def cancel(self, run_id: str) -> bool:
        """
        Cancel a run: deny its pending approvals, then cancel its task.
        Must be called from the event loop thread.

        Returns:
            False if the run is unknown or already finished
        """
        record = self._runs.get(run_id)
        if record is None or record.finished or record.cancel_requested:
            return False
        record.cancel_requested = True
        denied = self.risk_gate.cancel_run(run_id)
        running = self.lanes.cancel_running(run_id)
        logger.warning("Cancelling run %s (%d approval(s) denied, running=%s)", run_id, denied, running)
        return True

    # ---- internals ----

    async def _drive(self, record: RunRecord) -> RunResult:
        machine = record.machine
        fix_attempts = 0
        try:
            if record.cancel_requested:
                raise asyncio.CancelledError()

            terminal = TerminalTool(
                self.workspace_root,
                risk_gate=self.risk_gate,
                classifier=self.classifier,
                timeout_s=self.config.terminal_timeout_s,
                run_id=record.run_id,
            )
            executor = Executor(
                self.planner, terminal, self.file_editor, self.workspace_root, self.config.max_retries
            )

            self._transition(record, RunLifecycleState.PLANNING, f"Planning: {record.goal}")
            machine.update_context(metadata={"goal": record.goal})
            record.plan = await self.planner.plan_project(record.goal)

            self._transition(record, RunLifecycleState.EXECUTING, f"{len(record.plan.phases)} phase(s) planned")
            await executor.execute_plan(record.plan, self.event_sink)
            machine.update_context(progress=0.8)

            self._transition(record, RunLifecycleState.TESTING, "Plan executed")
            fix_attempts = await self._test_and_fix(record, terminal, executor)
            return RunResult(record.run_id, machine.get_current_state(), record.plan, None, fix_attempts)

        except asyncio.CancelledError:
            machine.cancel("Cancelled by request")
            self._emit_state(record, "Cancelled by request")
            logger.warning("Run %s cancelled", record.run_id)
            raise
        except OrchestrationError as exc:
            return self._fail(record, str(exc), fix_attempts)
        except Exception as exc:
            logger.exception("Run %s crashed", record.run_id)
            return self._fail(record, f"{type(exc).__name__}: {exc}", fix_attempts)

    async def _test_and_fix(self, record: RunRecord, terminal: TerminalTool, executor: Executor) -> int:
        """Run the test command; on failure alternate fixing and testing. Returns fix attempts used."""
        command = self.config.test_command
        if not command:
            self._transition(record, RunLifecycleState.DONE, "No test command configured")
            return 0

        fix_attempts = 0
        while True:
            result = await terminal.execute(command)
            if result.success:
                self._transition(record, RunLifecycleState.DONE, "Tests passed")
                return fix_attempts

            failure = result.error or "tests failed"
            if result.output:
                failure = f"{failure}\nOutput: {result.output}"
            if fix_attempts >= self.config.max_fix_attempts:
                raise OrchestrationError(f"Tests still failing after {fix_attempts} fix attempt(s): {failure}")

            fix_attempts += 1
            self._transition(record, RunLifecycleState.FIXING, f"Tests failed: {failure}")
            fix_phase = await self.planner.replan_phase(
                Phase(
                    id=f"fix-{fix_attempts}",
                    name="Fix failing tests",
                    description=f"Make `{command}` pass",
                ),
                failure,
            )
            record.fix_phases.append(fix_phase)
            await executor.execute_phase(fix_phase, self.event_sink)
            self._transition(record, RunLifecycleState.TESTING, f"Fix attempt {fix_attempts} applied")

    def _fail(self, record: RunRecord, message: str, fix_attempts: int) -> RunResult:
        logger.error("Run %s failed: %s", record.run_id, message)
        if record.machine.transition(RunLifecycleState.ERROR, message).success:
            self._emit_state(record, message)
        return RunResult(record.run_id, RunLifecycleState.ERROR, record.plan, message, fix_attempts)

    def _transition(self, record: RunRecord, target: RunLifecycleState, reason: str) -> None:
        result = record.machine.transition(target, reason)
        if not result.success:
            raise OrchestrationError(result.error or f"transition to {target.value} rejected")
        self._emit_state(record, reason)

    def _emit_state(self, record: RunRecord, reason: str) -> None:
        history = record.machine.get_history()
        if not history:
            return
        last = history[-1]
        self.event_sink.emit(EventType.STATE_CHANGED, {
            "run_id": record.run_id,
            "from": last.from_state.value,
            "to": last.to_state.value,
            "reason": reason,
        })
