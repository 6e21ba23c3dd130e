"""
RunForge run worker

Drives complete runs (plan → execute → test ⇄ fix) on top of the planner,
executor and governance packages, and exposes them on the command line.
"""

from .supervisor import RunRecord, RunResult, RunSupervisor

__all__ = ["RunRecord", "RunResult", "RunSupervisor"]
