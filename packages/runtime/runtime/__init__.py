from runtime.config import LLMConfig, OrchestratorConfig, load_config_file
from runtime.lane_queue import LaneQueue
from runtime.state_machine import (
    RunContext,
    RunLifecycleState,
    RunPhase,
    RunStateMachine,
    TransitionRecord,
    TransitionResult,
    create_state_machine,
    get_phase_description,
    get_state_description,
    is_valid_state_transition,
)

__all__ = [
    "LLMConfig",
    "LaneQueue",
    "OrchestratorConfig",
    "RunContext",
    "RunLifecycleState",
    "RunPhase",
    "RunStateMachine",
    "TransitionRecord",
    "TransitionResult",
    "create_state_machine",
    "get_phase_description",
    "get_state_description",
    "is_valid_state_transition",
    "load_config_file",
]
