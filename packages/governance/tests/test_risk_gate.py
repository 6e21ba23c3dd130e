"""
Tests for RiskGateService

Validates:
- Timeout resolves to False
- Exactly-once resolution (second decision is ignored)
- risk_prompt event carries the request
- Decisions delivered from another thread
- Cancelling a run denies only its requests
- A stopped gate denies without prompting
"""

import asyncio
import threading

from governance import RiskGateService
from protocol import EventType, RecordingEventSink, RiskInvocation, RiskLevel

PUSH = RiskInvocation(tool="terminal", command="git push origin main", cwd="/work")


async def _wait_for_pending(gate: RiskGateService, count: int = 1) -> None:
    while gate.pending_count < count:
        await asyncio.sleep(0.001)


def test_timeout_resolves_false():
    async def run_test():
        sink = RecordingEventSink()
        async with RiskGateService(sink) as gate:
            allowed = await gate.request_risk_approval(PUSH, timeout_s=0.05)
            assert allowed is False
            assert gate.pending_count == 0

            prompt = sink.payloads(EventType.RISK_PROMPT)[0]
            assert gate.resolve_risk_decision(prompt["request_id"], True) is False

    asyncio.run(run_test())


def test_resolve_twice_only_first_counts():
    async def run_test():
        sink = RecordingEventSink()
        async with RiskGateService(sink) as gate:
            waiter = asyncio.create_task(gate.request_risk_approval(PUSH, timeout_s=5))
            await _wait_for_pending(gate)
            request_id = sink.payloads(EventType.RISK_PROMPT)[0]["request_id"]

            assert gate.resolve_risk_decision(request_id, True) is True
            assert gate.resolve_risk_decision(request_id, False) is False
            assert await waiter is True

    asyncio.run(run_test())


def test_risk_prompt_payload():
    async def run_test():
        sink = RecordingEventSink()
        async with RiskGateService(sink) as gate:
            waiter = asyncio.create_task(gate.request_risk_approval(PUSH, run_id="run-1"))
            await _wait_for_pending(gate)
            prompt = sink.payloads(EventType.RISK_PROMPT)[0]
            gate.resolve_risk_decision(prompt["request_id"], False)
            assert await waiter is False

        assert prompt["description"] == "High-risk command: git push origin main"
        assert prompt["risk"] == RiskLevel.HIGH.value
        assert prompt["tool"] == "terminal"
        assert prompt["cwd"] == "/work"
        assert prompt["run_id"] == "run-1"

    asyncio.run(run_test())


def test_decision_from_other_thread():
    async def run_test():
        sink = RecordingEventSink()
        async with RiskGateService(sink) as gate:
            waiter = asyncio.create_task(gate.request_risk_approval(PUSH, timeout_s=5))
            await _wait_for_pending(gate)
            request_id = sink.payloads(EventType.RISK_PROMPT)[0]["request_id"]

            results = []
            thread = threading.Thread(
                target=lambda: results.append(gate.resolve_risk_decision(request_id, True))
            )
            thread.start()
            thread.join()

            assert results == [True]
            assert await asyncio.wait_for(waiter, timeout=1) is True

    asyncio.run(run_test())


def test_cancel_run_denies_only_that_run():
    async def run_test():
        async with RiskGateService() as gate:
            a = asyncio.create_task(gate.request_risk_approval(PUSH, timeout_s=5, run_id="run-a"))
            b = asyncio.create_task(gate.request_risk_approval(PUSH, timeout_s=5, run_id="run-b"))
            await _wait_for_pending(gate, 2)

            assert gate.cancel_run("run-a") == 1
            assert await a is False
            assert gate.pending_count == 1

            remaining = gate.pending_requests()[0]
            assert remaining.run_id == "run-b"
            gate.resolve_risk_decision(remaining.id, True)
            assert await b is True

    asyncio.run(run_test())


def test_stopped_gate_denies_without_prompt():
    async def run_test():
        sink = RecordingEventSink()
        gate = RiskGateService(sink)
        assert await gate.request_risk_approval(PUSH) is False
        assert sink.events == []

    asyncio.run(run_test())


def test_stop_denies_pending():
    async def run_test():
        gate = RiskGateService().start()
        waiter = asyncio.create_task(gate.request_risk_approval(PUSH, timeout_s=5))
        await _wait_for_pending(gate)

        assert gate.stop() == 1
        assert await waiter is False
        assert not gate.is_running

    asyncio.run(run_test())


def test_cancelled_waiter_leaves_no_pending_entry():
    async def run_test():
        async with RiskGateService() as gate:
            waiter = asyncio.create_task(gate.request_risk_approval(PUSH, timeout_s=5))
            await _wait_for_pending(gate)
            waiter.cancel()
            await asyncio.gather(waiter, return_exceptions=True)
            assert gate.pending_count == 0

    asyncio.run(run_test())


def test_only_high_risk_requires_approval():
    gate = RiskGateService()

    assert gate.requires_approval(gate.classify_risk(PUSH))
    assert not gate.requires_approval(
        gate.classify_risk(RiskInvocation(tool="terminal", command="npm install"))
    )
