"""Run configuration: YAML file for defaults, environment variables override."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from protocol.run_constants import DEFAULT_APPROVAL_TIMEOUT_S, MAX_RETRIES


DEFAULT_CONFIG_PATH = Path("configs") / "config.yaml"


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"0", "false", "off", "no"}:
        return False
    if normalized in {"1", "true", "on", "yes"}:
        return True
    return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_config_file(config_path: str | Path | None = None) -> Dict[str, Any]:
    """Read the YAML config file; a missing or empty file yields {}."""
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


@dataclass(frozen=True)
class OrchestratorConfig:
    max_retries: int = MAX_RETRIES
    approval_timeout_s: float = DEFAULT_APPROVAL_TIMEOUT_S
    terminal_timeout_s: float = 300.0
    max_fix_attempts: int = 2
    test_command: Optional[str] = None
    auto_approve: bool = False
    max_concurrent_runs: int = 4

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        return cls(
            max_retries=max(1, _env_int("RUNFORGE_MAX_RETRIES", MAX_RETRIES)),
            approval_timeout_s=_env_float("RUNFORGE_APPROVAL_TIMEOUT_S", DEFAULT_APPROVAL_TIMEOUT_S),
            terminal_timeout_s=_env_float("RUNFORGE_TERMINAL_TIMEOUT_S", 300.0),
            max_fix_attempts=max(0, _env_int("RUNFORGE_MAX_FIX_ATTEMPTS", 2)),
            test_command=os.getenv("RUNFORGE_TEST_COMMAND") or None,
            auto_approve=_read_bool_env("RUNFORGE_AUTO_APPROVE", False),
            max_concurrent_runs=max(1, _env_int("RUNFORGE_MAX_CONCURRENT_RUNS", 4)),
        )


@dataclass(frozen=True)
class LLMConfig:
    provider: str = "stub"
    model: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    timeout_s: float = 30.0
    max_retries: int = 2
    retry_backoff_s: float = 0.8
    max_prompt_chars: int = 20000

    @classmethod
    def from_config_file(cls, config_path: str | Path | None = None) -> LLMConfig | None:
        data = load_config_file(config_path)
        models = data.get("models")
        if not models:
            return None

        provider = models.get("provider", "stub")
        provider_config = models.get(provider) or {}
        return cls(
            provider=provider,
            model=provider_config.get("model") or models.get("default"),
            base_url=provider_config.get("base_url"),
            api_key=provider_config.get("api_key") or None,
            timeout_s=float(models.get("timeout_s", 30.0)),
            max_retries=int(models.get("max_retries", 2)),
            retry_backoff_s=float(models.get("retry_backoff_s", 0.8)),
            max_prompt_chars=int(models.get("max_prompt_chars", 20000)),
        )

    @classmethod
    def from_env(cls) -> LLMConfig:
        provider = os.getenv("LLM_PROVIDER", "stub").lower()
        base_url = os.getenv("LLM_BASE_URL")

        api_key = None
        if provider == "openai":
            api_key = os.getenv("OPENAI_API_KEY")
            if not base_url:
                base_url = os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1"
        elif provider == "ollama":
            if not base_url:
                base_url = os.getenv("OLLAMA_BASE_URL") or "http://localhost:11434"

        return cls(
            provider=provider,
            model=os.getenv("LLM_MODEL"),
            base_url=base_url,
            api_key=api_key,
            timeout_s=_env_float("LLM_TIMEOUT_S", 30.0),
            max_retries=_env_int("LLM_MAX_RETRIES", 2),
            retry_backoff_s=_env_float("LLM_RETRY_BACKOFF_S", 0.8),
            max_prompt_chars=_env_int("LLM_MAX_PROMPT_CHARS", 20000),
        )

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> LLMConfig:
        """Environment wins; the config file supplies defaults."""
        env_config = cls.from_env()
        if os.getenv("LLM_PROVIDER"):
            return env_config

        file_config = cls.from_config_file(config_path)
        if file_config is None:
            return env_config

        return cls(
            provider=file_config.provider,
            model=env_config.model or file_config.model,
            base_url=os.getenv("LLM_BASE_URL") or file_config.base_url,
            api_key=file_config.api_key,
            timeout_s=env_config.timeout_s if os.getenv("LLM_TIMEOUT_S") else file_config.timeout_s,
            max_retries=env_config.max_retries if os.getenv("LLM_MAX_RETRIES") else file_config.max_retries,
            retry_backoff_s=(
                env_config.retry_backoff_s if os.getenv("LLM_RETRY_BACKOFF_S") else file_config.retry_backoff_s
            ),
            max_prompt_chars=(
                env_config.max_prompt_chars if os.getenv("LLM_MAX_PROMPT_CHARS") else file_config.max_prompt_chars
            ),
        )
