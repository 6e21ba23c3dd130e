from __future__ import annotations

from typing import Optional

from runtime.llm.base import HTTPChatLLM


class OllamaLLM(HTTPChatLLM):
    provider_name = "ollama"

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        url = f"{self._base_url}/api/chat"
        payload = {
            "model": self._model,
            "messages": self._messages(self._trim_prompt(prompt), system),
            "stream": False,
        }
        data = await self._post_with_retry(url, payload)
        try:
            return data["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise RuntimeError("ollama response missing expected content") from exc
