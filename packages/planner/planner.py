"""
Planner - goal -> Plan, failed Phase -> regenerated Phase

Philosophy: the Planner owns the shape, the LLM fills it in.
- Prompts are built here, decoding is strict (see decoding.py)
- A response that does not decode is a PlanGenerationError, never a guess
- Replanning touches only the failed phase's tasks
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from protocol.errors import PlanGenerationError
from protocol.plan import Phase, Plan
from runtime.llm.base import BaseLLM

from .context import ProjectContext
from .decoding import decode_phase, decode_plan
from .prompts import PLANNER_SYSTEM, build_plan_prompt, build_replan_prompt

logger = logging.getLogger(__name__)


class Planner:
    def __init__(self, llm: BaseLLM, project_context: Optional[ProjectContext] = None):
        self.llm = llm
        self.project_context = project_context

    async def plan_project(self, goal: str) -> Plan:
        """
        Decompose `goal` into a Plan. All phases and tasks start pending.

        Raises:
            PlanGenerationError: generation failed or the response does not decode
        """
        snapshot = await asyncio.to_thread(self.project_context.analyze) if self.project_context else None
        prompt = build_plan_prompt(goal, snapshot)
        raw = await self._generate(prompt)

        result = decode_plan(raw)
        if not result.ok:
            logger.warning("Plan for %r did not decode: %s", goal, result.error)
        plan = result.unwrap()
        logger.info("Planned %d phase(s) for %r", len(plan.phases), goal)
        return plan

    async def replan_phase(self, phase: Phase, failure_reason: str) -> Phase:
        """
        Regenerate the tasks of `phase` given the failure text.

        Returns a new Phase with the same id and name; the caller decides
        whether to swap its tasks into the plan.

        Raises:
            PlanGenerationError: generation failed or the response does not decode
        """
        prompt = build_replan_prompt(phase, failure_reason)
        raw = await self._generate(prompt)

        result = decode_phase(raw, phase)
        if not result.ok:
            logger.warning("Replan of phase %s did not decode: %s", phase.id, result.error)
        new_phase = result.unwrap()
        logger.info("Replanned phase %s with %d task(s)", phase.id, len(new_phase.tasks))
        return new_phase

    async def _generate(self, prompt: str) -> str:
        try:
            return await self.llm.generate(prompt, system=PLANNER_SYSTEM)
        except Exception as exc:
            raise PlanGenerationError(f"generation service failed: {exc}") from exc
