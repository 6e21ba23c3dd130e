from typing import Optional, Protocol

from pydantic import BaseModel


class ToolResult(BaseModel):
    """Uniform result of a tool adapter call."""

    success: bool
    output: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: str = "") -> "ToolResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str, output: str = "") -> "ToolResult":
        return cls(success=False, output=output, error=error)


class ToolAdapter(Protocol):
    async def execute(self, command: str) -> ToolResult:
        ...
