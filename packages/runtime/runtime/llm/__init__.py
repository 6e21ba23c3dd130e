from runtime.llm.base import BaseLLM, DEFAULT_MAX_PROMPT_CHARS, HTTPChatLLM
from runtime.llm.factory import build_llm, build_llm_from_config
from runtime.llm.ollama import OllamaLLM
from runtime.llm.openai_compat import OpenAIChatLLM
from runtime.llm.stub import ScriptedLLM, StubLLM

__all__ = [
    "BaseLLM",
    "DEFAULT_MAX_PROMPT_CHARS",
    "HTTPChatLLM",
    "OllamaLLM",
    "OpenAIChatLLM",
    "ScriptedLLM",
    "StubLLM",
    "build_llm",
    "build_llm_from_config",
]
