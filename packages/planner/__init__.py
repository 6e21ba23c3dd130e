"""
RunForge Planner Layer

Turns a goal into a Plan of ordered Phases and regenerates a single failed
Phase on demand.

Architecture:
    Goal
        ↓
    ProjectContext (workspace snapshot)
        ↓
    LLM (plan text)
        ↓
    Strict decode (DecodeResult)
        ↓
    Plan / Phase (or PlanGenerationError)
"""

from .context import ProjectContext, ProjectSnapshot
from .decoding import DecodeResult, decode_json_object, decode_phase, decode_plan
from .planner import Planner
from .prompts import build_plan_prompt, build_replan_prompt

__all__ = [
    "Planner",

    # Decoding
    "DecodeResult",
    "decode_json_object",
    "decode_plan",
    "decode_phase",

    # Prompts
    "build_plan_prompt",
    "build_replan_prompt",

    # Workspace snapshot
    "ProjectContext",
    "ProjectSnapshot",
]

__version__ = "1.0.0"
