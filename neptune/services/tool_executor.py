import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from neptune.models.errors import ToolExecutionError
from neptune.models.tools import (
    AutonomyDecision,
    ToolCall,
    ToolContext,
    ToolExecutionRecord,
    ToolExecutionResult,
    ToolResult,
    parse_tool_arguments,
)
from neptune.services.audit import AuditSink
from neptune.services.autonomy_gate import AutonomyGate
from neptune.services.background import BackgroundTaskQueue
from neptune.tools.registry import ToolRegistry, ToolSpec

logger = logging.getLogger(__name__)


def _validation_details(error: ValidationError) -> List[Dict[str, str]]:
    return [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in error.errors()]


def confirmation_required_result(call: ToolCall, args: Dict[str, Any], decision: AutonomyDecision) -> ToolResult:
    return ToolResult(
        success=False,
        message=f'Action "{call.name}" requires confirmation. {decision.reason}',
        data={
            "requiresConfirmation": True,
            "toolName": call.name,
            "args": args,
            "confidence": decision.confidence,
            "reason": decision.reason,
        },
    )


class ToolExecutor:
    """Runs batches of model-requested tool calls.

    Every call is handled on its own: malformed arguments, unknown tools,
    schema mismatches and handler exceptions become failure results for that
    call only. The output always has one result per input call, in order.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        gate: AutonomyGate,
        audit_sink: Optional[AuditSink] = None,
        background: Optional[BackgroundTaskQueue] = None,
    ):
        self.registry = registry
        self.gate = gate
        self.audit_sink = audit_sink
        self.background = background

    async def execute_all(self, tool_calls: List[ToolCall], context: ToolContext) -> List[ToolExecutionResult]:
        if not tool_calls:
            return []
        logger.info(f"Executing {len(tool_calls)} tool call(s) in parallel: {[c.name for c in tool_calls]}")
        results = await asyncio.gather(*(self.execute_one(call, context) for call in tool_calls))
        return list(results)

    async def execute_one(self, call: ToolCall, context: ToolContext) -> ToolExecutionResult:
        try:
            args = parse_tool_arguments(call.arguments)
        except ValueError as e:
            logger.warning(f"Malformed arguments for tool {call.name}: {e}")
            return self._failed(call, ToolResult.failure("Invalid tool arguments", error=str(e)))

        spec = self.registry.get(call.name)
        if spec is None:
            logger.warning(f"Model requested unknown tool {call.name}")
            return self._failed(call, ToolResult.failure(f"Unknown tool: {call.name}", error="unknown_tool"))

        try:
            validated = spec.validate(args)
        except ValidationError as e:
            return self._failed(
                call,
                ToolResult(
                    success=False,
                    message=f"Invalid arguments for {call.name}",
                    error="validation_error",
                    data={"validationErrors": _validation_details(e)},
                ),
            )

        decision = await self.gate.evaluate(call.name, context.tenant_id, context.user_id)
        if not decision.auto_execute:
            logger.info(f"Tool {call.name} held for confirmation ({decision.reason})")
            return ToolExecutionResult(
                call_id=call.id,
                name=call.name,
                result=confirmation_required_result(call, args, decision),
                args=args,
                requires_confirmation=True,
            )

        result, elapsed_ms = await self._run_handler(spec, validated, context)
        self._audit(
            ToolExecutionRecord(
                tenant_id=context.tenant_id,
                user_id=context.user_id,
                tool_name=call.name,
                was_automatic=True,
                execution_time_ms=elapsed_ms,
                result_status="success" if result.success else "failed",
            )
        )
        return ToolExecutionResult(call_id=call.id, name=call.name, result=result, args=args, auto_executed=True)

    async def execute_confirmed(
        self, tool_name: str, args: Dict[str, Any], context: ToolContext, approved: bool
    ) -> ToolResult:
        """Apply a human decision on a call the gate held back."""
        spec = self.registry.get(tool_name)
        if spec is None:
            return ToolResult.failure(f"Unknown tool: {tool_name}", error="unknown_tool")

        if not approved:
            self._audit(
                ToolExecutionRecord(
                    tenant_id=context.tenant_id,
                    user_id=context.user_id,
                    tool_name=tool_name,
                    was_automatic=False,
                    user_approved=False,
                    result_status="rejected",
                )
            )
            return ToolResult(success=True, message=f'Action "{tool_name}" was cancelled.')

        try:
            validated = spec.validate(args)
        except ValidationError as e:
            return ToolResult(
                success=False,
                message=f"Invalid arguments for {tool_name}",
                error="validation_error",
                data={"validationErrors": _validation_details(e)},
            )

        result, elapsed_ms = await self._run_handler(spec, validated, context)
        self._audit(
            ToolExecutionRecord(
                tenant_id=context.tenant_id,
                user_id=context.user_id,
                tool_name=tool_name,
                was_automatic=False,
                user_approved=True,
                execution_time_ms=elapsed_ms,
                result_status="success" if result.success else "failed",
            )
        )
        return result

    async def _run_handler(self, spec: ToolSpec, validated: Any, context: ToolContext):
        start = time.monotonic()
        try:
            result = await spec.handler(validated, context)
            if not isinstance(result, ToolResult):
                result = ToolResult.model_validate(result)
        except asyncio.CancelledError:
            raise
        except ToolExecutionError as e:
            logger.warning(f"Tool {spec.name} reported failure: {e.message}")
            result = ToolResult.failure(e.message, error=e.code)
        except Exception as e:
            logger.error(f"Tool {spec.name} failed: {e}", exc_info=True)
            result = ToolResult.failure("Tool execution failed", error=str(e))
        return result, int((time.monotonic() - start) * 1000)

    def _failed(self, call: ToolCall, result: ToolResult) -> ToolExecutionResult:
        return ToolExecutionResult(call_id=call.id, name=call.name, result=result)

    def _audit(self, record: ToolExecutionRecord) -> None:
        if self.audit_sink is None or self.background is None:
            return
        self.background.submit(self.audit_sink.record(record), name=f"audit:{record.tool_name}")


def summarize_results(results: List[ToolExecutionResult]) -> List[Dict[str, Any]]:
    """``toolResults`` event payload entries."""
    return [{"name": r.name, "success": r.success} for r in results]


def result_payloads(results: List[ToolExecutionResult]) -> List[Dict[str, Any]]:
    """Per-call records kept in assistant message metadata."""
    return [
        {
            "name": r.name,
            "callId": r.call_id,
            "args": r.args,
            "result": json.loads(r.result_json),
            "autoExecuted": r.auto_executed,
            "requiresConfirmation": r.requires_confirmation,
        }
        for r in results
    ]
