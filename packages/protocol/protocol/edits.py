from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class EditAction(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"

    @property
    def change_type(self) -> str:
        """Name used in ``file_change`` events."""
        if self is EditAction.MODIFY:
            return "update"
        return self.value


class FileDiff(BaseModel):
    path: str
    action: EditAction
    original_content: str = ""
    new_content: str = ""
    diff: str = ""


class FileEditPlan(BaseModel):
    task: str
    files: List[FileDiff] = Field(default_factory=list)
    reasoning: str = ""

    @property
    def paths(self) -> List[str]:
        return [f.path for f in self.files]


class EditSpecEntry(BaseModel):
    """One entry of the structured edit description returned by the generation service."""

    path: str = Field(min_length=1)
    action: EditAction
    changes: str = ""


class EditSpec(BaseModel):
    reasoning: str = ""
    files: List[EditSpecEntry]
