from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskInvocation(BaseModel):
    """A side-effecting action about to be performed by a tool adapter."""

    tool: str
    command: Optional[str] = None
    url: Optional[str] = None
    cwd: Optional[str] = None

    @model_validator(mode="after")
    def _has_target(self) -> "RiskInvocation":
        if not self.command and not self.url:
            raise ValueError("invocation needs a command or a url")
        return self

    def describe(self) -> str:
        if self.command:
            return f"High-risk command: {self.command}"
        if self.url:
            return f"High-risk request: {self.url}"
        return "High-risk action requested."


class RiskRequest(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tool: str
    command: Optional[str] = None
    url: Optional[str] = None
    cwd: Optional[str] = None
    risk: RiskLevel
    run_id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)

    @classmethod
    def for_invocation(
        cls,
        invocation: RiskInvocation,
        risk: RiskLevel,
        run_id: Optional[str] = None,
    ) -> "RiskRequest":
        return cls(
            tool=invocation.tool,
            command=invocation.command,
            url=invocation.url,
            cwd=invocation.cwd,
            risk=risk,
            run_id=run_id,
        )

    def to_prompt(self) -> Dict[str, Any]:
        """Payload for the ``risk_prompt`` notification."""
        invocation = RiskInvocation(tool=self.tool, command=self.command, url=self.url)
        return {
            "request_id": self.id,
            "description": invocation.describe(),
            "tool": self.tool,
            "command": self.command,
            "url": self.url,
            "cwd": self.cwd,
            "risk": self.risk.value,
            "run_id": self.run_id,
            "created_at": self.created_at,
        }
