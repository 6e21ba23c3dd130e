"""Plan / Phase / Task model shared by planner, executor and run worker.

Task payloads are a tagged union keyed by ``tool``. Unknown tools decode into
``UnsupportedPayload`` so that dispatch (not decoding) is where a missing tool
surfaces as ``ToolNotFoundError``.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, model_validator


class PhaseStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


KNOWN_TOOLS = ("terminal", "file")


class TerminalPayload(BaseModel):
    """Run one shell command through the terminal adapter."""

    model_config = ConfigDict(extra="ignore")

    tool: Literal["terminal"] = "terminal"
    command: str = Field(min_length=1)


class FileEditPayload(BaseModel):
    """Edit one or more files; the change spec defaults to the task description."""

    model_config = ConfigDict(extra="ignore")

    tool: Literal["file"] = "file"
    description: Optional[str] = None
    path: Optional[str] = None


class UnsupportedPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    tool: str


def _payload_tag(value: Any) -> str:
    tool = value.get("tool") if isinstance(value, dict) else getattr(value, "tool", None)
    if tool in KNOWN_TOOLS:
        return tool
    return "unsupported"


TaskPayload = Annotated[
    Union[
        Annotated[TerminalPayload, Tag("terminal")],
        Annotated[FileEditPayload, Tag("file")],
        Annotated[UnsupportedPayload, Tag("unsupported")],
    ],
    Discriminator(_payload_tag),
]


class Task(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(min_length=1)
    description: str
    payload: TaskPayload
    status: TaskStatus = TaskStatus.PENDING

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_payload(cls, data: Any) -> Any:
        # Accept the flat wire shape {"tool": ..., "command"/"path": ...}
        if not isinstance(data, dict) or "payload" in data:
            return data
        if "tool" not in data:
            return data
        data = dict(data)
        payload = {"tool": data.pop("tool")}
        for key in ("command", "path", "url", "arguments"):
            if key in data:
                payload[key] = data.pop(key)
        data["payload"] = payload
        return data

    @property
    def tool(self) -> str:
        return self.payload.tool

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "tool": self.tool,
            "status": self.status.value,
        }


class Phase(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    status: PhaseStatus = PhaseStatus.PENDING
    tasks: List[Task] = Field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "status": self.status.value}


class Plan(BaseModel):
    """A goal broken into ordered phases.

    ``goal`` and ``reasoning`` are frozen after creation; only a failed phase's
    ``tasks`` list is ever replaced (by replanning).
    """

    goal: str = Field(frozen=True)
    reasoning: str = Field(default="", frozen=True)
    phases: List[Phase] = Field(min_length=1)

    def phase(self, phase_id: str) -> Optional[Phase]:
        for phase in self.phases:
            if phase.id == phase_id:
                return phase
        return None
