"""
Plan Decoding - strict, schema-validated decode of generation output

Accepted input shapes (nothing else):
- A bare JSON object
- Exactly one fenced block (```json ... ``` or ``` ... ```) holding a JSON object

No substring extraction, no best-effort repair. Every decode returns a
DecodeResult; callers turn a failed result into PlanGenerationError.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import ValidationError

from protocol.errors import PlanGenerationError
from protocol.plan import Phase, PhaseStatus, Plan, Task, TaskStatus

T = TypeVar("T")

_FENCE_RE = re.compile(r"\A```(?:json)?[ \t]*\n(.*)\n[ \t]*```\Z", re.DOTALL)


@dataclass(frozen=True)
class DecodeResult(Generic[T]):
    """Either a decoded value or the reason decoding failed."""

    value: Optional[T] = None
    error: Optional[str] = None
    raw: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, raw: str = "") -> "DecodeResult[T]":
        return cls(value=value, raw=raw)

    @classmethod
    def failure(cls, error: str, raw: str = "") -> "DecodeResult[T]":
        return cls(error=error, raw=raw)

    def unwrap(self) -> T:
        if self.error is not None:
            raise PlanGenerationError(self.error, raw=self.raw)
        return self.value  # type: ignore[return-value]


def json_object_text(raw: str) -> Optional[str]:
    """Return the JSON object text of a bare or singly-fenced response."""
    text = raw.strip()
    fence = _FENCE_RE.match(text)
    if fence:
        text = fence.group(1).strip()
    if text.startswith("{") and text.endswith("}"):
        return text
    return None


def decode_json_object(raw: Optional[str]) -> DecodeResult[Dict[str, Any]]:
    if raw is None or not raw.strip():
        return DecodeResult.failure("empty response", raw or "")
    candidate = json_object_text(raw)
    if candidate is None:
        return DecodeResult.failure("response is not a JSON object", raw)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        return DecodeResult.failure(f"invalid JSON: {exc.msg} at line {exc.lineno}", raw)
    if not isinstance(data, dict):
        return DecodeResult.failure("response is not a JSON object", raw)
    return DecodeResult.success(data, raw)


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    suffix = f" (+{exc.error_count() - 1} more)" if exc.error_count() > 1 else ""
    return f"{location}: {message}{suffix}" if location else f"{message}{suffix}"


def decode_plan(raw: Optional[str]) -> DecodeResult[Plan]:
    """Decode a plan response; every phase and task starts pending."""
    obj = decode_json_object(raw)
    if not obj.ok:
        return DecodeResult.failure(obj.error or "", obj.raw)

    try:
        plan = Plan.model_validate(obj.value)
    except ValidationError as exc:
        return DecodeResult.failure(f"plan schema mismatch: {_validation_message(exc)}", obj.raw)

    for phase in plan.phases:
        phase.status = PhaseStatus.PENDING
        for task in phase.tasks:
            task.status = TaskStatus.PENDING
    return DecodeResult.success(plan, obj.raw)


def decode_phase(raw: Optional[str], original: Phase) -> DecodeResult[Phase]:
    """
    Decode a replan response for `original`.

    The response may be a whole phase object or just {"tasks": [...]}.
    The original id and name are kept whatever the response says; tasks not
    reported completed are reset to pending, and at least one must remain.
    """
    obj = decode_json_object(raw)
    if not obj.ok:
        return DecodeResult.failure(obj.error or "", obj.raw)

    data = obj.value or {}
    tasks_data = data.get("tasks")
    if not isinstance(tasks_data, list):
        return DecodeResult.failure("phase response has no tasks list", obj.raw)
    if not tasks_data:
        return DecodeResult.failure("phase response has an empty tasks list", obj.raw)

    try:
        tasks = [Task.model_validate(item) for item in tasks_data]
    except ValidationError as exc:
        return DecodeResult.failure(f"task schema mismatch: {_validation_message(exc)}", obj.raw)

    for task in tasks:
        if task.status != TaskStatus.COMPLETED:
            task.status = TaskStatus.PENDING
    if all(task.status == TaskStatus.COMPLETED for task in tasks):
        return DecodeResult.failure("phase response has no task left to run", obj.raw)

    description = data.get("description")
    phase = Phase(
        id=original.id,
        name=original.name,
        description=description if isinstance(description, str) else original.description,
        tasks=tasks,
    )
    return DecodeResult.success(phase, obj.raw)
