from __future__ import annotations

import json
from typing import Optional

from protocol.plan import Phase

from .context import ProjectSnapshot

PLANNER_SYSTEM = "You are an expert software architect. You reply with a single JSON object and nothing else."

PLAN_PROMPT = """Break the request below into ordered, executable phases.

Current project structure:
{structure}

Current dependencies:
{dependencies}

Request: "{goal}"

Each task uses exactly one tool:
- "terminal": run one shell command (set "command")
- "file": create, edit or delete files (describe the change in "description", optionally set "path")

Return JSON with this structure:
{{
  "goal": "Brief summary of what will be built",
  "reasoning": "Architectural decisions and tech stack choice",
  "phases": [
    {{
      "id": "phase-1",
      "name": "Phase name",
      "description": "What this phase achieves",
      "tasks": [
        {{"id": "task-1", "description": "Specific actionable task", "tool": "terminal", "command": "npm install"}},
        {{"id": "task-2", "description": "Create src/app.ts with ...", "tool": "file", "path": "src/app.ts"}}
      ]
    }}
  ]
}}

Be specific: say "Run npm create vite@latest", not "Set up the project".
Prefer technologies already used by the project."""

REPLAN_PROMPT = """The phase below failed during execution. Adjust its tasks so the phase succeeds.

Phase:
{phase}

Error:
{error}

Keep the phase id and name. Return JSON of the form
{{"tasks": [{{"id": "...", "description": "...", "tool": "terminal", "command": "..."}}]}}
Mark tasks that already succeeded with "status": "completed" to skip them."""


def build_plan_prompt(goal: str, snapshot: Optional[ProjectSnapshot] = None) -> str:
    structure = snapshot.structure if snapshot and snapshot.structure else "(empty workspace)"
    dependencies = json.dumps(snapshot.dependencies if snapshot else {}, indent=2, sort_keys=True)
    return PLAN_PROMPT.format(structure=structure, dependencies=dependencies, goal=goal)


def build_replan_prompt(phase: Phase, error: str) -> str:
    phase_json = json.dumps(phase.model_dump(mode="json", exclude={"status"}), indent=2)
    return REPLAN_PROMPT.format(phase=phase_json, error=error)
