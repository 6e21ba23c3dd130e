"""
Run State Machine - Lifecycle of one orchestration run

State Flow:
    IDLE → PLANNING → EXECUTING → TESTING ⇄ FIXING → DONE
                 ↘        ↘          ↘        ↘
                              ERROR → IDLE | PLANNING

    any non-terminal state → CANCELLED   (only through cancel())

Rules:
- The transition table is closed: any pair not listed is rejected
- Transitions never raise; they return a TransitionResult
- History is append-only and forms a reconstructable path
- A single writer drives one machine (the owning run)
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class RunLifecycleState(str, Enum):
    """Run lifecycle states."""
    IDLE = "idle"               # Waiting for instructions
    PLANNING = "planning"       # Creating execution plan
    EXECUTING = "executing"     # Running the plan
    TESTING = "testing"         # Running tests
    FIXING = "fixing"           # Fixing issues found by tests
    ERROR = "error"             # Error occurred (recoverable)
    DONE = "done"               # Completed successfully
    CANCELLED = "cancelled"     # Stopped on request


class RunPhase(str, Enum):
    """Coarse phase shown to UIs."""
    PLAN = "plan"
    EXECUTE = "execute"
    TEST = "test"
    FIX = "fix"


@dataclass
class TransitionResult:
    success: bool
    from_state: RunLifecycleState
    to_state: RunLifecycleState
    timestamp: float
    reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TransitionRecord:
    from_state: RunLifecycleState
    to_state: RunLifecycleState
    timestamp: float
    reason: Optional[str] = None
    duration: Optional[float] = None  # Seconds since previous record

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "timestamp": self.timestamp,
            "reason": self.reason,
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransitionRecord":
        return cls(
            from_state=RunLifecycleState(data["from"]),
            to_state=RunLifecycleState(data["to"]),
            timestamp=data["timestamp"],
            reason=data.get("reason"),
            duration=data.get("duration"),
        )


@dataclass
class RunContext:
    """Mutable context of one run."""
    run_id: Optional[str] = None
    mode: str = "autonomous"
    failed_step: Optional[str] = None   # RunPhase value where the run failed
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    current_file: Optional[str] = None
    line: Optional[int] = None
    progress: float = 0.0
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunContext":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


ERROR_CARRYING_STATES = {RunLifecycleState.ERROR, RunLifecycleState.FIXING}


class RunStateMachine:
    """
    State machine for one run.

    Enforces:
    - Valid state transitions (closed table)
    - Append-only transition history
    - Error bookkeeping in the context
    """

    VALID_TRANSITIONS: Dict[RunLifecycleState, Set[RunLifecycleState]] = {
        RunLifecycleState.IDLE: {RunLifecycleState.PLANNING, RunLifecycleState.ERROR},
        RunLifecycleState.PLANNING: {RunLifecycleState.EXECUTING, RunLifecycleState.ERROR},
        RunLifecycleState.EXECUTING: {RunLifecycleState.TESTING, RunLifecycleState.ERROR},
        RunLifecycleState.TESTING: {
            RunLifecycleState.FIXING,
            RunLifecycleState.DONE,
            RunLifecycleState.ERROR,
        },
        RunLifecycleState.FIXING: {
            RunLifecycleState.TESTING,
            RunLifecycleState.DONE,
            RunLifecycleState.ERROR,
        },
        RunLifecycleState.ERROR: {RunLifecycleState.IDLE, RunLifecycleState.PLANNING},
        RunLifecycleState.DONE: {RunLifecycleState.IDLE},
        RunLifecycleState.CANCELLED: set(),
    }

    # Order used by get_possible_transitions()
    _TARGET_ORDER = [
        RunLifecycleState.IDLE,
        RunLifecycleState.PLANNING,
        RunLifecycleState.EXECUTING,
        RunLifecycleState.TESTING,
        RunLifecycleState.FIXING,
        RunLifecycleState.DONE,
        RunLifecycleState.ERROR,
    ]

    PHASE_MAPPING = {
        RunLifecycleState.IDLE: RunPhase.PLAN,
        RunLifecycleState.PLANNING: RunPhase.PLAN,
        RunLifecycleState.EXECUTING: RunPhase.EXECUTE,
        RunLifecycleState.TESTING: RunPhase.TEST,
        RunLifecycleState.FIXING: RunPhase.FIX,
    }

    ACTIVE_STATES = {
        RunLifecycleState.PLANNING,
        RunLifecycleState.EXECUTING,
        RunLifecycleState.TESTING,
        RunLifecycleState.FIXING,
    }

    TERMINAL_STATES = {RunLifecycleState.DONE, RunLifecycleState.CANCELLED}

    def __init__(self, run_id: Optional[str] = None, mode: str = "autonomous"):
        self._state = RunLifecycleState.IDLE
        self._context = RunContext(run_id=run_id, mode=mode)
        self._history: List[TransitionRecord] = []

    # ----- read-only projections -----

    def get_current_state(self) -> RunLifecycleState:
        return self._state

    def get_current_phase(self) -> RunPhase:
        """Phase derived from the state; error/done/cancelled keep the failed step."""
        phase = self.PHASE_MAPPING.get(self._state)
        if phase is not None:
            return phase
        try:
            return RunPhase(self._context.failed_step)
        except ValueError:
            return RunPhase.EXECUTE

    def get_context(self) -> RunContext:
        return RunContext.from_dict(self._context.to_dict())

    def get_history(self) -> List[TransitionRecord]:
        return list(self._history)

    def is_active(self) -> bool:
        return self._state in self.ACTIVE_STATES

    def is_terminal(self) -> bool:
        return self._state in self.TERMINAL_STATES

    def is_error(self) -> bool:
        return self._state == RunLifecycleState.ERROR

    def can_transition(self, from_state: RunLifecycleState, to_state: RunLifecycleState) -> bool:
        if from_state == to_state:
            return False
        return to_state in self.VALID_TRANSITIONS.get(from_state, set())

    def get_possible_transitions(self) -> List[RunLifecycleState]:
        allowed = self.VALID_TRANSITIONS.get(self._state, set())
        return [s for s in self._TARGET_ORDER if s in allowed and s != self._state]

    # ----- mutation -----

    def transition(
        self,
        target: RunLifecycleState | str,
        reason: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> TransitionResult:
        """
        Transition to a new state.

        Args:
            target: Target state
            reason: Why the transition happens (becomes context.error for error/fixing)
            run_id: Run id to record into the context

        Returns:
            TransitionResult; success=False with an error message if rejected
        """
        current = self._state
        now = time.time()
        try:
            target = RunLifecycleState(target)
        except ValueError:
            return TransitionResult(False, current, current, now, reason, f"Unknown state: {target}")

        if target == current:
            return TransitionResult(False, current, target, now, reason, "Cannot transition to same state")
        if not self.can_transition(current, target):
            return TransitionResult(
                False, current, target, now, reason,
                f"Invalid transition from {current.value} to {target.value}",
            )

        self._record(current, target, now, reason)
        self._state = target

        if target == RunLifecycleState.IDLE:
            self._context = RunContext(run_id=self._context.run_id, mode=self._context.mode)
        if run_id:
            self._context.run_id = run_id

        if target in ERROR_CARRYING_STATES:
            self._context.error = reason or f"Run entered {target.value} state"
            if target == RunLifecycleState.ERROR and self._context.failed_step is None:
                self._context.failed_step = self.PHASE_MAPPING.get(current, RunPhase.PLAN).value
        else:
            self._context.error = None

        if target == RunLifecycleState.PLANNING:
            self._context.failed_step = None
            if self._context.started_at is None:
                self._context.started_at = now
        if target == RunLifecycleState.DONE and self._context.finished_at is None:
            self._context.finished_at = now
            self._context.progress = 1.0

        return TransitionResult(True, current, target, now, reason)

    def cancel(self, reason: Optional[str] = None) -> TransitionResult:
        """Move any non-terminal state to CANCELLED (outside the regular table)."""
        current = self._state
        now = time.time()
        if current in self.TERMINAL_STATES:
            return TransitionResult(
                False, current, RunLifecycleState.CANCELLED, now, reason,
                f"Cannot cancel a run in terminal state {current.value}",
            )
        self._record(current, RunLifecycleState.CANCELLED, now, reason)
        self._state = RunLifecycleState.CANCELLED
        if self._context.failed_step is None:
            self._context.failed_step = self.PHASE_MAPPING.get(current, RunPhase.EXECUTE).value
        self._context.error = None
        if self._context.finished_at is None:
            self._context.finished_at = now
        return TransitionResult(True, current, RunLifecycleState.CANCELLED, now, reason)

    def update_context(self, **updates: Any) -> None:
        """Shallow-merge fields into the context (no state change, no history)."""
        for key, value in updates.items():
            if not hasattr(self._context, key):
                raise AttributeError(f"Unknown run context field: {key}")
            setattr(self._context, key, value)

    def _record(
        self,
        from_state: RunLifecycleState,
        to_state: RunLifecycleState,
        timestamp: float,
        reason: Optional[str],
    ) -> None:
        duration = None
        if self._history:
            duration = timestamp - self._history[-1].timestamp
        self._history.append(TransitionRecord(from_state, to_state, timestamp, reason, duration))

    # ----- stats & serialisation -----

    def get_stats(self) -> Dict[str, Any]:
        durations = [r.duration for r in self._history if r.duration is not None]
        return {
            "total_transitions": len(self._history),
            "time_in_current_state": (time.time() - self._history[-1].timestamp) if self._history else 0.0,
            "average_state_duration": (sum(durations) / len(durations)) if durations else 0.0,
            "error_count": sum(1 for r in self._history if r.to_state == RunLifecycleState.ERROR),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_state": self._state.value,
            "current_phase": self.get_current_phase().value,
            "context": self._context.to_dict(),
            "history": [r.to_dict() for r in self._history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunStateMachine":
        machine = cls()
        machine._state = RunLifecycleState(data["current_state"])
        machine._context = RunContext.from_dict(data.get("context") or {})
        machine._history = [TransitionRecord.from_dict(r) for r in data.get("history") or []]
        return machine


# Helper functions

def create_state_machine(
    initial_state: RunLifecycleState | str = RunLifecycleState.IDLE,
    run_id: Optional[str] = None,
) -> RunStateMachine:
    machine = RunStateMachine(run_id=run_id)
    if RunLifecycleState(initial_state) != RunLifecycleState.IDLE:
        machine.transition(initial_state, "Initial state", run_id)
    return machine


def is_valid_state_transition(from_state: RunLifecycleState | str, to_state: RunLifecycleState | str) -> bool:
    return RunStateMachine().can_transition(RunLifecycleState(from_state), RunLifecycleState(to_state))


STATE_DESCRIPTIONS = {
    RunLifecycleState.IDLE: "Waiting for instructions",
    RunLifecycleState.PLANNING: "Creating execution plan",
    RunLifecycleState.EXECUTING: "Running the plan",
    RunLifecycleState.TESTING: "Running tests",
    RunLifecycleState.FIXING: "Fixing issues",
    RunLifecycleState.ERROR: "Error occurred",
    RunLifecycleState.DONE: "Completed successfully",
    RunLifecycleState.CANCELLED: "Cancelled",
}

PHASE_DESCRIPTIONS = {
    RunPhase.PLAN: "Planning Phase",
    RunPhase.EXECUTE: "Execution Phase",
    RunPhase.TEST: "Testing Phase",
    RunPhase.FIX: "Fixing Phase",
}


def get_state_description(state: RunLifecycleState | str) -> str:
    try:
        return STATE_DESCRIPTIONS[RunLifecycleState(state)]
    except ValueError:
        return "Unknown state"


def get_phase_description(phase: RunPhase | str) -> str:
    try:
        return PHASE_DESCRIPTIONS[RunPhase(phase)]
    except ValueError:
        return "Unknown phase"
