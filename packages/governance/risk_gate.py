"""
Risk Gate - approval checkpoint for high-risk tool invocations

A tool adapter that is about to do something risky calls
`request_risk_approval()`, which:
1. Registers a pending entry (request id -> future + timer)
2. Emits a `risk_prompt` event carrying the RiskRequest
3. Suspends until `resolve_risk_decision()` is called or the timer fires

Guarantees:
- Every request is resolved exactly once (approved, denied or timed out)
- Timeout resolves to False (fail closed)
- A stopped gate denies every request without prompting

The pending table is process-wide state shared by all runs; every mutation
happens under one lock so a decision may arrive from any thread while the
timer fires on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from protocol.events import EventSink, EventType
from protocol.risk import RiskInvocation, RiskLevel, RiskRequest
from protocol.run_constants import DEFAULT_APPROVAL_TIMEOUT_S

from .risk_rules import RiskClassifier

logger = logging.getLogger(__name__)


@dataclass
class PendingApproval:
    request: RiskRequest
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    timer: Optional[asyncio.TimerHandle] = None


class RiskGateService:
    """
    Owns the pending-approval table and its lifecycle.

    Usage:
        async with RiskGateService(event_sink) as gate:
            allowed = await gate.request_risk_approval(invocation)

    Decisions arrive through `resolve_risk_decision(request_id, allow)`,
    typically from a UI or CLI reacting to the `risk_prompt` event.
    """

    def __init__(
        self,
        event_sink: Optional[EventSink] = None,
        default_timeout_s: float = DEFAULT_APPROVAL_TIMEOUT_S,
        classifier: Optional[RiskClassifier] = None,
    ):
        self.event_sink = event_sink
        self.default_timeout_s = default_timeout_s
        self.classifier = classifier or RiskClassifier()
        self._pending: Dict[str, PendingApproval] = {}
        self._lock = threading.Lock()
        self._running = False

    # ---- lifecycle ----

    def start(self) -> "RiskGateService":
        self._running = True
        logger.info("Risk gate started (timeout=%.1fs)", self.default_timeout_s)
        return self

    def stop(self) -> int:
        """Stop accepting requests and deny everything still pending."""
        self._running = False
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
        for entry in entries:
            self._deliver(entry, False)
        if entries:
            logger.warning("Risk gate stopped with %d pending request(s); denied", len(entries))
        return len(entries)

    @property
    def is_running(self) -> bool:
        return self._running

    async def __aenter__(self) -> "RiskGateService":
        return self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False

    # ---- classification ----

    def classify_risk(self, invocation: RiskInvocation) -> RiskLevel:
        return self.classifier.classify(invocation)

    def requires_approval(self, risk: RiskLevel) -> bool:
        """Only high-risk invocations are gated."""
        return risk == RiskLevel.HIGH

    # ---- approval ----

    async def request_risk_approval(
        self,
        invocation: RiskInvocation,
        timeout_s: Optional[float] = None,
        *,
        risk: Optional[RiskLevel] = None,
        run_id: Optional[str] = None,
    ) -> bool:
        """
        Ask for approval and wait for the decision.

        Args:
            invocation: Tool, command/url and cwd of the action
            timeout_s: Seconds to wait before denying (default: gate default)
            risk: Pre-computed risk level (classified here if omitted)
            run_id: Run the request belongs to, used by `cancel_run()`

        Returns:
            True if approved, False if denied, timed out or cancelled
        """
        if not self._running:
            logger.warning("Risk gate is not running; denying %s", invocation.describe())
            return False

        if risk is None:
            risk = self.classify_risk(invocation)
        request = RiskRequest.for_invocation(invocation, risk, run_id=run_id)
        timeout = self.default_timeout_s if timeout_s is None else timeout_s

        loop = asyncio.get_running_loop()
        entry = PendingApproval(request=request, future=loop.create_future(), loop=loop)
        with self._lock:
            self._pending[request.id] = entry
            entry.timer = loop.call_later(timeout, self._expire, request.id)

        logger.info("Risk approval requested %s: %s", request.id, invocation.describe())
        if self.event_sink is not None:
            try:
                self.event_sink.emit(EventType.RISK_PROMPT, request.to_prompt())
            except Exception:
                logger.exception("Failed to emit risk prompt %s", request.id)

        try:
            return await entry.future
        finally:
            with self._lock:
                if self._pending.get(request.id) is entry:
                    del self._pending[request.id]
            if entry.timer is not None:
                entry.timer.cancel()

    def resolve_risk_decision(self, request_id: str, allow: bool) -> bool:
        """
        Deliver a decision for a pending request.

        Returns:
            True if the request was pending and is now resolved; False if it
            is unknown, already resolved or timed out (no side effect).
        """
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.info("Risk decision for %s ignored (not pending)", request_id)
            return False

        logger.info("Risk request %s %s", request_id, "approved" if allow else "denied")
        self._deliver(entry, allow)
        return True

    def cancel_run(self, run_id: str) -> int:
        """Deny every pending request that belongs to `run_id`."""
        with self._lock:
            ids = [rid for rid, e in self._pending.items() if e.request.run_id == run_id]
            entries = [self._pending.pop(rid) for rid in ids]
        for entry in entries:
            self._deliver(entry, False)
        if entries:
            logger.warning("Denied %d pending request(s) of cancelled run %s", len(entries), run_id)
        return len(entries)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending_requests(self) -> List[RiskRequest]:
        with self._lock:
            return [e.request for e in self._pending.values()]

    # ---- internals ----

    def _expire(self, request_id: str) -> None:
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        logger.warning("Risk request %s timed out; denied", request_id)
        self._deliver(entry, False)

    @staticmethod
    def _deliver(entry: PendingApproval, allow: bool) -> None:
        """Settle the waiting future on its own loop (caller already removed the entry)."""

        def settle() -> None:
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_result(allow)

        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        if current is entry.loop:
            settle()
        elif not entry.loop.is_closed():
            entry.loop.call_soon_threadsafe(settle)
