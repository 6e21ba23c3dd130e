"""
Terminal Tool - shell command adapter

Checks, in order:
1. Risk: high-risk commands wait for RiskGate approval (denied -> failure)
2. Allow-list: the base command must be in the allowed set
3. Traversal: `..` and `~` are rejected outside `cd`

`cd` only moves the tracked working directory (never above the workspace);
everything else runs in a subprocess with a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from governance.path_utils import is_within
from governance.risk_gate import RiskGateService
from governance.risk_rules import RiskClassifier
from protocol.risk import RiskInvocation, RiskLevel
from protocol.tools import ToolResult

logger = logging.getLogger(__name__)


class TerminalTool:
    name = "terminal"

    def __init__(
        self,
        workspace_root: Path,
        risk_gate: Optional[RiskGateService] = None,
        classifier: Optional[RiskClassifier] = None,
        timeout_s: float = 300.0,
        run_id: Optional[str] = None,
    ):
        self.workspace_root = Path(workspace_root).resolve()
        self.current_dir = self.workspace_root
        self.risk_gate = risk_gate
        if classifier is None:
            classifier = risk_gate.classifier if risk_gate is not None else RiskClassifier()
        self.classifier = classifier
        self.timeout_s = timeout_s
        self.run_id = run_id

    async def execute(self, command: str) -> ToolResult:
        parts = command.strip().split()
        if not parts:
            return ToolResult.fail("Empty command.")
        base_command = parts[0]

        risk = self.classifier.classify_command(command)
        if risk == RiskLevel.HIGH:
            allowed = await self._request_approval(command, risk)
            if not allowed:
                logger.warning("High-risk command denied: %s", command)
                return ToolResult.fail("Command was not approved by the user (risk gate).")

        if not self.classifier.is_allowed_command(base_command):
            return ToolResult.fail(f"Command '{base_command}' is not allowed for security reasons.")

        if base_command != "cd" and (".." in command or "~" in command):
            return ToolResult.fail("Directory traversal (.. or ~) is not allowed.")

        if base_command == "cd":
            return self._change_directory(parts[1] if len(parts) > 1 else None)

        return await self._run(command)

    async def _request_approval(self, command: str, risk: RiskLevel) -> bool:
        if self.risk_gate is None:
            logger.warning("No risk gate configured; denying high-risk command")
            return False
        invocation = RiskInvocation(tool=self.name, command=command, cwd=str(self.current_dir))
        return await self.risk_gate.request_risk_approval(invocation, risk=risk, run_id=self.run_id)

    def _change_directory(self, target: Optional[str]) -> ToolResult:
        new_path = (self.current_dir / target).resolve() if target else self.workspace_root
        if not new_path.is_dir():
            return ToolResult.fail(f"Directory not found: {target}")
        if not is_within(new_path, self.workspace_root):
            return ToolResult.fail(f"Directory is outside the workspace: {target}")
        self.current_dir = new_path
        return ToolResult.ok(f"Changed directory to {self.current_dir}")

    async def _run(self, command: str) -> ToolResult:
        logger.info("Executing in %s: %s", self.current_dir, command)
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(self.current_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return ToolResult.fail(f"Command timed out after {self.timeout_s:g}s: {command}")
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            message = f"Command failed with exit code {proc.returncode}"
            if stderr.strip():
                message = f"{message}: {stderr.strip()}"
            return ToolResult.fail(message, output=stdout)

        # Some tools report on stderr only
        return ToolResult.ok(stdout or stderr)
