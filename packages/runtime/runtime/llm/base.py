from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx


DEFAULT_MAX_PROMPT_CHARS = 20000


class BaseLLM(ABC):
    """Plan/code generation service.

    ``generate`` takes a fully constructed prompt and returns raw model text.
    Implementations must NOT parse JSON here; decoding belongs to the caller.
    """

    def __init__(self, max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS) -> None:
        self._max_prompt_chars = max_prompt_chars

    @abstractmethod
    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str:
        raise NotImplementedError

    def _trim_prompt(self, prompt: str) -> str:
        if self._max_prompt_chars <= 0:
            return prompt
        if len(prompt) <= self._max_prompt_chars:
            return prompt
        return prompt[: self._max_prompt_chars]


class HTTPChatLLM(BaseLLM):
    """Shared retry/backoff loop for HTTP chat backends."""

    provider_name = "llm"

    def __init__(
        self,
        *,
        model: str,
        base_url: str,
        timeout_s: float = 30.0,
        max_retries: int = 2,
        retry_backoff_s: float = 0.8,
        max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(max_prompt_chars=max_prompt_chars)
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._retry_backoff_s = retry_backoff_s
        self._transport = transport

    @staticmethod
    def _messages(prompt: str, system: Optional[str]) -> list[dict[str, str]]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def _post_with_retry(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        name = self.provider_name
        attempt = 0
        while True:
            try:
                async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                    response = await client.post(url, json=payload, headers=headers)
            except httpx.TimeoutException:
                if attempt >= self._max_retries:
                    raise RuntimeError(f"{name} request timed out")
                await self._sleep_backoff(attempt)
                attempt += 1
                continue
            except httpx.HTTPError as exc:
                raise RuntimeError(f"{name} request failed: {exc}") from exc

            if response.status_code == 429 or response.status_code >= 500:
                if attempt >= self._max_retries:
                    raise RuntimeError(f"{name} request failed with status {response.status_code}")
                await self._sleep_backoff(attempt)
                attempt += 1
                continue

            if 400 <= response.status_code < 500:
                hint = "check model name or base url" if response.status_code == 404 else "check request"
                raise ValueError(f"{name} error status={response.status_code} hint={hint}")

            try:
                return response.json()
            except ValueError as exc:
                raise RuntimeError(f"{name} response was not valid JSON") from exc

    async def _sleep_backoff(self, attempt: int) -> None:
        delay = self._retry_backoff_s * (2**attempt)
        if delay > 0:
            await asyncio.sleep(delay)
