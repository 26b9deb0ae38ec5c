import json
from datetime import UTC, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ToolCall(BaseModel):
    """A tool call as requested by the model. Arguments are still raw JSON text."""

    id: str
    name: str
    arguments: str = ""


class ToolContext(BaseModel):
    """Identity a tool runs on behalf of"""

    tenant_id: str
    user_id: str
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    conversation_id: Optional[str] = None


class ToolResult(BaseModel):
    """Result envelope shared by executed, failed and held-back tool calls."""

    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, message: str, error: Optional[str] = None) -> "ToolResult":
        return cls(success=False, message=message, error=error)


class PolicyVerdict(BaseModel):
    """Raw answer from a policy service; confidence is not trusted to be in range."""

    auto_execute: bool
    confidence: float
    reason: str


class AutonomyDecision(BaseModel):
    """Per-call gate verdict. Never cached: confidence moves with every approval."""

    tool_name: str
    auto_execute: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str


class ToolExecutionResult(BaseModel):
    call_id: str
    name: str
    result: ToolResult
    args: Dict[str, Any] = Field(default_factory=dict)
    auto_executed: bool = False
    requires_confirmation: bool = False

    @property
    def result_json(self) -> str:
        return self.result.model_dump_json(exclude_none=True)

    @property
    def success(self) -> bool:
        return self.result.success

    def to_message(self) -> Dict[str, Any]:
        """Render as a tool-role message for the next model round."""
        return {"role": "tool", "tool_call_id": self.call_id, "content": self.result_json}


class ToolExecutionRecord(BaseModel):
    """Audit row describing one tool execution or human decision."""

    tenant_id: str
    user_id: str
    tool_name: str
    was_automatic: bool
    user_approved: Optional[bool] = None
    execution_time_ms: int = 0
    result_status: str = "pending"
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def parse_tool_arguments(raw: str) -> Dict[str, Any]:
    """Decode a model-produced argument string into a JSON object.

    Empty strings decode to an empty object; anything that is not a JSON
    object raises ``ValueError``.
    """
    if not raw or not raw.strip():
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"Tool arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed
