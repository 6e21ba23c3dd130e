from protocol.edits import EditAction, EditSpec, EditSpecEntry, FileDiff, FileEditPlan
from protocol.errors import (
    OrchestrationError,
    PhaseExecutionError,
    PlanGenerationError,
    RunCancelledError,
    ToolExecutionError,
    ToolNotFoundError,
    TransactionRollbackError,
    TransactionStateError,
)
from protocol.events import (
    Event,
    EventSink,
    EventType,
    FanOutEventSink,
    JsonlEventSink,
    LoggingEventSink,
    RecordingEventSink,
)
from protocol.plan import (
    FileEditPayload,
    Phase,
    PhaseStatus,
    Plan,
    Task,
    TaskPayload,
    TaskStatus,
    TerminalPayload,
    UnsupportedPayload,
)
from protocol.risk import RiskInvocation, RiskLevel, RiskRequest
from protocol.run_constants import (
    DEFAULT_APPROVAL_TIMEOUT_S,
    MAX_RETRIES,
    RUN_ID_PATTERN,
    is_valid_run_id,
    new_run_id,
)
from protocol.tools import ToolAdapter, ToolResult


def schema_for(model: type) -> dict:
    """Lightweight JSON schema helper."""
    return model.model_json_schema()


__all__ = [
    "DEFAULT_APPROVAL_TIMEOUT_S",
    "EditAction",
    "EditSpec",
    "EditSpecEntry",
    "Event",
    "EventSink",
    "EventType",
    "FanOutEventSink",
    "FileDiff",
    "FileEditPayload",
    "FileEditPlan",
    "JsonlEventSink",
    "LoggingEventSink",
    "MAX_RETRIES",
    "OrchestrationError",
    "Phase",
    "PhaseExecutionError",
    "PhaseStatus",
    "Plan",
    "PlanGenerationError",
    "RUN_ID_PATTERN",
    "RecordingEventSink",
    "RiskInvocation",
    "RiskLevel",
    "RiskRequest",
    "RunCancelledError",
    "Task",
    "TaskPayload",
    "TaskStatus",
    "TerminalPayload",
    "ToolAdapter",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolResult",
    "TransactionRollbackError",
    "TransactionStateError",
    "UnsupportedPayload",
    "is_valid_run_id",
    "new_run_id",
    "schema_for",
]
