"""Error taxonomy shared by planner, executor, governance and the run worker.

Every error carries a stable ``code`` for UI/debug output.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple


class OrchestrationError(Exception):
    code: str = "OrchestrationError"


class PlanGenerationError(OrchestrationError):
    """Plan or replan response could not be decoded into the plan schema."""

    code = "PlanGenerationFailed"

    def __init__(self, reason: str, raw: Optional[str] = None) -> None:
        self.reason = reason
        self.raw = raw
        super().__init__(f"Plan generation failed: {reason}")


class ToolExecutionError(OrchestrationError):
    """A tool adapter reported failure (denied approvals included)."""

    code = "ToolExecutionFailed"

    def __init__(self, tool: str, message: str, output: str = "") -> None:
        self.tool = tool
        self.output = output
        text = message
        if output:
            text = f"{message}\nOutput: {output}"
        super().__init__(text)


class ToolNotFoundError(OrchestrationError, ValueError):
    code = "ToolNotFound"

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        self.detail = detail
        super().__init__(f"Tool not found: {name}" + (f" ({detail})" if detail else ""))


class PhaseExecutionError(OrchestrationError):
    code = "PhaseExecutionFailed"

    def __init__(self, phase_id: str, phase_name: str, attempts: int, last_error: str) -> None:
        self.phase_id = phase_id
        self.phase_name = phase_name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Phase '{phase_name}' ({phase_id}) failed after {attempts} attempts: {last_error}"
        )


class TransactionRollbackError(OrchestrationError):
    """Restoring snapshots failed after a write failure; workspace may be inconsistent."""

    code = "TransactionRollbackFailed"

    def __init__(self, original: BaseException, failures: Sequence[Tuple[str, BaseException]]) -> None:
        self.original = original
        self.failures: List[Tuple[str, BaseException]] = list(failures)
        paths = ", ".join(path for path, _ in self.failures)
        super().__init__(
            f"Rollback failed for {len(self.failures)} file(s) [{paths}] "
            f"after write error: {original}"
        )


class TransactionStateError(OrchestrationError, RuntimeError):
    code = "TransactionState"


class RunCancelledError(OrchestrationError):
    code = "RunCancelled"

    def __init__(self, run_id: str, reason: str = "") -> None:
        self.run_id = run_id
        self.reason = reason
        super().__init__(f"Run {run_id} cancelled" + (f": {reason}" if reason else ""))
