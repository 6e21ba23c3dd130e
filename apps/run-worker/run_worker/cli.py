"""Command-line entry point: `runforge run` and `runforge classify`."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from governance import RiskClassifier, RiskGateService
from protocol import (
    EventType,
    FanOutEventSink,
    JsonlEventSink,
    LoggingEventSink,
    RiskInvocation,
    RunCancelledError,
)
from runtime import OrchestratorConfig
from runtime.llm import BaseLLM, build_llm

from .supervisor import RunResult, RunSupervisor

logger = logging.getLogger(__name__)


def _ask_stdin(prompt: Dict[str, Any]) -> bool:
    try:
        answer = input(f"\n{prompt['description']} (cwd: {prompt.get('cwd')})\nAllow? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


class ApprovalResponder:
    """
    Event sink that answers risk prompts.

    With auto_approve every prompt is approved at once; otherwise the question
    is asked on a daemon thread so a slow answer never blocks the event loop
    (an unanswered prompt simply times out in the gate).
    """

    def __init__(self, auto_approve: bool = False, ask: Optional[Callable[[Dict[str, Any]], bool]] = None):
        self.auto_approve = auto_approve
        self.gate: Optional[RiskGateService] = None
        self._ask = ask or _ask_stdin

    def emit(self, event_type, payload) -> None:
        if getattr(event_type, "value", event_type) != EventType.RISK_PROMPT.value or self.gate is None:
            return
        if self.auto_approve:
            logger.warning("Auto-approving: %s", payload["description"])
            self.gate.resolve_risk_decision(payload["request_id"], True)
            return
        threading.Thread(target=self._decide, args=(payload,), daemon=True).start()

    def _decide(self, payload: Dict[str, Any]) -> None:
        allow = self._ask(payload)
        if not self.gate.resolve_risk_decision(payload["request_id"], allow):
            logger.info("Answer for %s arrived after the request was settled", payload["request_id"])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="runforge", description="Plan and execute a goal against a workspace")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--rules", type=Path, default=None, help="Alternate risk rules YAML")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Plan and execute a goal")
    run.add_argument("goal", help="What to build or change")
    run.add_argument("--workspace", type=Path, default=Path.cwd(), help="Workspace root (default: cwd)")
    run.add_argument("--config", type=Path, default=None, help="Config YAML (default: configs/config.yaml)")
    run.add_argument("--auto-approve", action="store_true", help="Approve every high-risk command")
    run.add_argument("--test-command", default=None, help="Command that must pass before the run is done")
    run.add_argument("--events", type=Path, default=None, help="Append events to this JSONL file")

    classify = sub.add_parser("classify", help="Print the risk level of a command or URL")
    classify.add_argument("target", help="Command line, or URL with --url")
    classify.add_argument("--url", action="store_true", help="Treat target as a URL")
    return parser


def _print_result(result: RunResult) -> None:
    print(f"Run {result.run_id}: {result.state.value}")
    if result.plan is not None:
        for phase in result.plan.phases:
            print(f"  [{phase.status.value}] {phase.name}")
    if result.fix_attempts:
        print(f"  fix attempts: {result.fix_attempts}")
    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)


async def _run(args: argparse.Namespace, classifier: RiskClassifier, llm: BaseLLM) -> int:
    config = OrchestratorConfig.from_env()
    overrides: Dict[str, Any] = {}
    if args.auto_approve:
        overrides["auto_approve"] = True
    if args.test_command:
        overrides["test_command"] = args.test_command
    config = dataclasses.replace(config, **overrides)

    responder = ApprovalResponder(auto_approve=config.auto_approve)
    sinks: List[Any] = [LoggingEventSink(), responder]
    if args.events is not None:
        sinks.append(JsonlEventSink(args.events))

    workspace = args.workspace.resolve()
    if not workspace.is_dir():
        print(f"Workspace {workspace} is not a directory", file=sys.stderr)
        return 2

    async with RunSupervisor(llm, workspace, config, FanOutEventSink(sinks), classifier=classifier) as supervisor:
        responder.gate = supervisor.risk_gate
        try:
            result = await supervisor.run(args.goal)
        except RunCancelledError as exc:
            print(str(exc), file=sys.stderr)
            return 130
    _print_result(result)
    return 0 if result.succeeded else 1


def _classify(args: argparse.Namespace, classifier: RiskClassifier) -> int:
    if args.url:
        invocation = RiskInvocation(tool="browser", url=args.target)
    else:
        invocation = RiskInvocation(tool="terminal", command=args.target)
    risk = classifier.classify(invocation)
    print(risk.value)
    if not args.url:
        base = args.target.split()[0] if args.target.split() else ""
        print(f"allowed: {'yes' if classifier.is_allowed_command(base) else 'no'}")
    return 0


def main(argv: Optional[List[str]] = None, *, llm: Optional[BaseLLM] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        classifier = RiskClassifier.from_file(args.rules)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Cannot load risk rules: {exc}", file=sys.stderr)
        return 2

    if args.command == "classify":
        return _classify(args, classifier)

    try:
        llm = llm or build_llm(args.config)
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_run(args, classifier, llm))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
