"""
Pytest configuration for executor tests.

Provides fake tool adapters and a fake planner so executor behaviour can be
checked without subprocesses or an LLM.
"""

import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest

from protocol import Phase, RecordingEventSink, ToolResult


class StubTerminal:
    """Terminal adapter double: scripted results, records every command."""

    def __init__(self, result: Optional[Callable[[str], ToolResult]] = None):
        self._result = result or (lambda command: ToolResult.ok(f"ran {command}"))
        self.commands: List[str] = []

    async def execute(self, command: str) -> ToolResult:
        self.commands.append(command)
        return self._result(command)


class FakePlanner:
    """Replanner double: returns `make_phase(phase, reason)` and records calls."""

    def __init__(self, make_phase: Callable[[Phase, str], Phase]):
        self._make_phase = make_phase
        self.calls: List[Tuple[str, str]] = []

    async def replan_phase(self, phase: Phase, failure_reason: str) -> Phase:
        self.calls.append((phase.id, failure_reason))
        return self._make_phase(phase, failure_reason)


@pytest.fixture
def temp_workspace():
    """Create temporary workspace for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sink():
    return RecordingEventSink()


@pytest.fixture
def stub_terminal():
    """Factory: stub_terminal(result_fn=None) -> StubTerminal."""
    return StubTerminal


@pytest.fixture
def fake_planner():
    """Factory: fake_planner(make_phase) -> FakePlanner."""
    return FakePlanner
