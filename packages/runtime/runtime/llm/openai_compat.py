from __future__ import annotations

from typing import Optional

import httpx

from runtime.llm.base import DEFAULT_MAX_PROMPT_CHARS, HTTPChatLLM


class OpenAIChatLLM(HTTPChatLLM):
    """OpenAI-compatible ``/chat/completions`` backend."""

    provider_name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 30.0,
        max_retries: int = 2,
        retry_backoff_s: float = 0.8,
        max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            model=model,
            base_url=base_url,
            timeout_s=timeout_s,
            max_retries=max_retries,
            retry_backoff_s=retry_backoff_s,
            max_prompt_chars=max_prompt_chars,
            transport=transport,
        )
        self._api_key = api_key

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        url = f"{self._base_url}/chat/completions"
        payload = {
            "model": self._model,
            "messages": self._messages(self._trim_prompt(prompt), system),
            "temperature": 0,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        data = await self._post_with_retry(url, payload, headers=headers)
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise RuntimeError("openai response missing expected content") from exc
