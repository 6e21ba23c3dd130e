"""
Event Sink - run notifications

Everything the orchestration core reports (progress, errors, file changes,
risk prompts, completion) goes through ``EventSink.emit(type, payload)``.
Emission is fire-and-forget: sinks must not raise into the caller and the
core never consumes a return value.

Sinks:
- RecordingEventSink: in-memory, thread-safe (tests, CLI summaries)
- LoggingEventSink: mirrors events into the standard logger
- JsonlEventSink: append-only JSON Lines file
- FanOutEventSink: forwards to several sinks
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Protocol, Union

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    PROGRESS = "progress"
    THINKING = "thinking"
    ERROR = "error"
    TOOL_USE = "tool_use"
    CHUNK = "chunk"
    FILE_CHANGE = "file_change"
    PLAN_UPDATED = "plan_updated"
    RISK_PROMPT = "risk_prompt"
    STATE_CHANGED = "state_changed"
    COMPLETE = "complete"


class EventSink(Protocol):
    def emit(self, event_type: Union[EventType, str], payload: Any) -> None:
        ...


@dataclass
class Event:
    event_type: str
    timestamp: str  # ISO8601 UTC
    data: Any

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls(**json.loads(json_str))

    @classmethod
    def create(cls, event_type: Union[EventType, str], data: Any) -> "Event":
        return cls(
            event_type=_type_name(event_type),
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=data,
        )


def _type_name(event_type: Union[EventType, str]) -> str:
    if isinstance(event_type, EventType):
        return event_type.value
    return str(event_type)


class RecordingEventSink:
    """Keeps every event in memory."""

    def __init__(self) -> None:
        self._events: List[Event] = []
        self._lock = threading.Lock()

    def emit(self, event_type: Union[EventType, str], payload: Any) -> None:
        with self._lock:
            self._events.append(Event.create(event_type, payload))

    @property
    def events(self) -> List[Event]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: Union[EventType, str]) -> List[Event]:
        name = _type_name(event_type)
        return [e for e in self.events if e.event_type == name]

    def payloads(self, event_type: Union[EventType, str]) -> List[Any]:
        return [e.data for e in self.of_type(event_type)]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class LoggingEventSink:
    def __init__(self, log: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self._log = log or logger
        self._level = level

    def emit(self, event_type: Union[EventType, str], payload: Any) -> None:
        name = _type_name(event_type)
        level = logging.WARNING if name == EventType.ERROR.value else self._level
        self._log.log(level, "[%s] %s", name, payload)


class JsonlEventSink:
    """Appends events to a JSONL file. Thread-safe for concurrent writers."""

    def __init__(self, events_file: Path) -> None:
        self.events_file = Path(events_file)
        self._lock = threading.Lock()
        self.events_file.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, event_type: Union[EventType, str], payload: Any) -> None:
        event = Event.create(event_type, payload)
        try:
            with self._lock:
                with open(self.events_file, "a", encoding="utf-8") as f:
                    f.write(event.to_json() + "\n")
        except OSError as exc:
            logger.warning("Failed to append event %s to %s: %s", event.event_type, self.events_file, exc)

    def read_events(self) -> List[Event]:
        if not self.events_file.exists():
            return []
        with open(self.events_file, "r", encoding="utf-8") as f:
            return [Event.from_json(line) for line in f if line.strip()]


class FanOutEventSink:
    def __init__(self, sinks: Iterable[EventSink]) -> None:
        self._sinks = list(sinks)

    def emit(self, event_type: Union[EventType, str], payload: Any) -> None:
        for sink in self._sinks:
            try:
                sink.emit(event_type, payload)
            except Exception:
                logger.exception("Event sink %r failed on %s", sink, _type_name(event_type))


def progress_payload(
    phase_id: str,
    phase_name: str,
    status: str,
    task_id: str | None = None,
    task_description: str | None = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "phase_id": phase_id,
        "phase_name": phase_name,
        "task_id": task_id,
        "status": status,
    }
    if task_description is not None:
        payload["task_description"] = task_description
    return payload
