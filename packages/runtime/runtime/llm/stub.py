from __future__ import annotations

import json
from collections import deque
from typing import Callable, Deque, List, Optional, Union

from runtime.llm.base import BaseLLM, DEFAULT_MAX_PROMPT_CHARS

Reply = Union[str, Callable[[str], str]]


class ScriptedLLM(BaseLLM):
    """Returns queued replies in order; records every prompt it receives.

    A reply may be a callable taking the prompt. When the script runs dry the
    ``fallback`` reply is used, or RuntimeError is raised if there is none.
    """

    def __init__(
        self,
        replies: Optional[List[Reply]] = None,
        fallback: Optional[Reply] = None,
        max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS,
    ) -> None:
        super().__init__(max_prompt_chars=max_prompt_chars)
        self._replies: Deque[Reply] = deque(replies or [])
        self._fallback = fallback
        self.prompts: List[str] = []

    def queue(self, *replies: Reply) -> None:
        self._replies.extend(replies)

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        prompt = self._trim_prompt(prompt)
        self.prompts.append(prompt)
        if self._replies:
            reply = self._replies.popleft()
        elif self._fallback is not None:
            reply = self._fallback
        else:
            raise RuntimeError("ScriptedLLM has no reply left")
        return reply(prompt) if callable(reply) else reply


class StubLLM(ScriptedLLM):
    """Offline provider: one-phase plan that echoes the goal, trivial file content."""

    def __init__(self, max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS) -> None:
        super().__init__(fallback=self._reply, max_prompt_chars=max_prompt_chars)

    @staticmethod
    def _reply(prompt: str) -> str:
        if '"phases"' in prompt:
            return json.dumps({
                "goal": "stub plan",
                "reasoning": "stub provider does not plan",
                "phases": [{
                    "id": "phase-1",
                    "name": "Echo",
                    "description": "Echo the request",
                    "tasks": [{
                        "id": "task-1",
                        "description": "Echo the goal",
                        "tool": "terminal",
                        "command": "echo stub",
                    }],
                }],
            })
        if '"files"' in prompt:
            return json.dumps({"reasoning": "stub provider makes no edits", "files": []})
        if '"tasks"' in prompt:
            return json.dumps({
                "tasks": [{
                    "id": "task-retry",
                    "description": "Echo after failure",
                    "tool": "terminal",
                    "command": "echo retry",
                }],
            })
        return ""
