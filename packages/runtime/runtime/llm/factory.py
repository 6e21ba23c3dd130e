from __future__ import annotations

from pathlib import Path

from runtime.config import LLMConfig
from runtime.llm.base import BaseLLM
from runtime.llm.ollama import OllamaLLM
from runtime.llm.openai_compat import OpenAIChatLLM
from runtime.llm.stub import StubLLM


DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OLLAMA_MODEL = "llama3:8b"


def build_llm(config_path: str | Path | None = None) -> BaseLLM:
    """Build the generation service; environment overrides the config file."""
    return build_llm_from_config(LLMConfig.load(config_path))


def build_llm_from_config(config: LLMConfig) -> BaseLLM:
    provider = config.provider.lower()

    if provider == "stub":
        return StubLLM(max_prompt_chars=config.max_prompt_chars)

    if provider == "openai":
        if not config.api_key:
            raise ValueError("openai provider requires api_key (set in config.yaml or OPENAI_API_KEY env)")
        return OpenAIChatLLM(
            api_key=config.api_key,
            model=config.model or DEFAULT_OPENAI_MODEL,
            base_url=config.base_url or "https://api.openai.com/v1",
            timeout_s=config.timeout_s,
            max_retries=config.max_retries,
            retry_backoff_s=config.retry_backoff_s,
            max_prompt_chars=config.max_prompt_chars,
        )

    if provider == "ollama":
        return OllamaLLM(
            model=config.model or DEFAULT_OLLAMA_MODEL,
            base_url=config.base_url or "http://localhost:11434",
            timeout_s=config.timeout_s,
            max_retries=config.max_retries,
            retry_backoff_s=config.retry_backoff_s,
            max_prompt_chars=config.max_prompt_chars,
        )

    raise ValueError(f"Unknown LLM provider: {config.provider}")
