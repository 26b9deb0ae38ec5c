import asyncio
import json

import pytest

from neptune.models.errors import ToolExecutionError
from neptune.models.tools import AutonomyDecision, ToolCall, ToolContext, ToolResult
from neptune.services.audit import AuditSink
from neptune.services.background import BackgroundTaskQueue
from neptune.services.tool_executor import ToolExecutor, result_payloads, summarize_results
from neptune.tests.fakes import AllowAllGate, LookupArgs, build_test_registry

CONTEXT = ToolContext(tenant_id="tenant-a", user_id="user-1", conversation_id="conv-1")


class RecordingSink(AuditSink):
    def __init__(self, fail=False):
        self.records = []
        self.fail = fail

    async def record(self, record):
        if self.fail:
            raise RuntimeError("audit store down")
        self.records.append(record)


class DenyGate:
    async def evaluate(self, tool_name, tenant_id, actor_id):
        return AutonomyDecision(tool_name=tool_name, auto_execute=False, confidence=0.3, reason="Needs a human")


def make_executor(gate=None, sink=None, registry=None):
    background = BackgroundTaskQueue()
    executor = ToolExecutor(registry or build_test_registry(), gate or AllowAllGate(), sink, background)
    return executor, background


@pytest.mark.asyncio
async def test_malformed_call_fails_alone():
    executor, _ = make_executor()
    calls = [
        ToolCall(id="a", name="lookup_record", arguments='{"query": "acme"}'),
        ToolCall(id="b", name="lookup_record", arguments='{"query": '),
        ToolCall(id="c", name="lookup_record", arguments='{"query": "globex"}'),
    ]
    results = await executor.execute_all(calls, CONTEXT)

    assert [r.call_id for r in results] == ["a", "b", "c"]
    assert [r.success for r in results] == [True, False, True]
    assert results[1].result.message == "Invalid tool arguments"


@pytest.mark.asyncio
async def test_unknown_tool_and_non_object_args():
    executor, _ = make_executor()
    results = await executor.execute_all(
        [
            ToolCall(id="a", name="no_such_tool", arguments="{}"),
            ToolCall(id="b", name="lookup_record", arguments="[1, 2]"),
        ],
        CONTEXT,
    )
    assert [r.success for r in results] == [False, False]
    assert results[0].result.error == "unknown_tool"


@pytest.mark.asyncio
async def test_schema_mismatch_returns_structured_errors():
    executor, _ = make_executor()
    [result] = await executor.execute_all([ToolCall(id="a", name="lookup_record", arguments='{"q": 1}')], CONTEXT)
    assert not result.success
    assert result.result.error == "validation_error"
    assert result.result.data["validationErrors"][0]["field"] == "query"


@pytest.mark.asyncio
async def test_handler_exception_is_contained():
    registry = build_test_registry()

    @registry.register("explode", "Always fails", LookupArgs)
    async def explode(args, context):
        raise RuntimeError("boom")

    executor, _ = make_executor(registry=registry)
    [result] = await executor.execute_all([ToolCall(id="a", name="explode", arguments='{"query": "x"}')], CONTEXT)
    assert not result.success
    assert result.result.error == "boom"


@pytest.mark.asyncio
async def test_handler_reported_failure_keeps_its_message():
    registry = build_test_registry()

    @registry.register("update_record", "Update a CRM record", LookupArgs)
    async def update_record(args, context):
        raise ToolExecutionError("CRM is read-only")

    executor, _ = make_executor(registry=registry)
    [result] = await executor.execute_all([ToolCall(id="a", name="update_record", arguments='{"query": "x"}')], CONTEXT)
    assert not result.success
    assert result.result.message == "CRM is read-only"
    assert result.result.error == "tool_error"


@pytest.mark.asyncio
async def test_batch_runs_concurrently():
    registry = build_test_registry()
    in_flight = []
    peak = []

    @registry.register("slow_lookup", "Slow", LookupArgs)
    async def slow_lookup(args, context):
        in_flight.append(args.query)
        peak.append(len(in_flight))
        await asyncio.sleep(0.05)
        in_flight.remove(args.query)
        return ToolResult(success=True, message="done")

    executor, _ = make_executor(registry=registry)
    calls = [ToolCall(id=str(i), name="slow_lookup", arguments=json.dumps({"query": str(i)})) for i in range(3)]
    results = await executor.execute_all(calls, CONTEXT)

    assert all(r.success for r in results)
    assert max(peak) == 3


@pytest.mark.asyncio
async def test_gated_call_is_not_executed():
    registry = build_test_registry()
    ran = []

    @registry.register("create_lead", "Create a lead", LookupArgs)
    async def create_lead(args, context):
        ran.append(args.query)
        return ToolResult(success=True, message="created")

    executor, _ = make_executor(gate=DenyGate(), registry=registry)
    [result] = await executor.execute_all(
        [ToolCall(id="a", name="create_lead", arguments='{"query": "Acme"}')], CONTEXT
    )

    assert ran == []
    assert result.requires_confirmation and not result.auto_executed
    assert result.result.data == {
        "requiresConfirmation": True,
        "toolName": "create_lead",
        "args": {"query": "Acme"},
        "confidence": 0.3,
        "reason": "Needs a human",
    }


@pytest.mark.asyncio
async def test_audit_goes_through_background_queue():
    sink = RecordingSink()
    executor, background = make_executor(sink=sink)
    await executor.execute_all([ToolCall(id="a", name="lookup_record", arguments='{"query": "acme"}')], CONTEXT)
    await background.drain()

    [record] = sink.records
    assert record.tool_name == "lookup_record"
    assert record.was_automatic and record.result_status == "success"


@pytest.mark.asyncio
async def test_audit_failure_does_not_affect_results():
    executor, background = make_executor(sink=RecordingSink(fail=True))
    [result] = await executor.execute_all(
        [ToolCall(id="a", name="lookup_record", arguments='{"query": "acme"}')], CONTEXT
    )
    await background.drain()
    assert result.success


@pytest.mark.asyncio
async def test_confirmed_execution_and_rejection_are_audited():
    sink = RecordingSink()
    executor, background = make_executor(gate=DenyGate(), sink=sink)

    approved = await executor.execute_confirmed("lookup_record", {"query": "acme"}, CONTEXT, approved=True)
    rejected = await executor.execute_confirmed("lookup_record", {"query": "acme"}, CONTEXT, approved=False)
    await background.drain()

    assert approved.success and approved.message == "Found acme"
    assert rejected.success and "cancelled" in rejected.message
    assert [(r.user_approved, r.result_status) for r in sink.records] == [(True, "success"), (False, "rejected")]


@pytest.mark.asyncio
async def test_payload_helpers():
    executor, _ = make_executor()
    results = await executor.execute_all(
        [
            ToolCall(id="a", name="lookup_record", arguments='{"query": "acme"}'),
            ToolCall(id="b", name="missing", arguments=""),
        ],
        CONTEXT,
    )
    assert summarize_results(results) == [
        {"name": "lookup_record", "success": True},
        {"name": "missing", "success": False},
    ]
    payloads = result_payloads(results)
    assert payloads[0]["callId"] == "a"
    assert payloads[0]["result"]["data"] == {"query": "acme"}
    assert payloads[1]["autoExecuted"] is False
