from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from neptune.models.tools import ToolCall


class ToolCallDelta(BaseModel):
    """Fragment of a tool call. Name and arguments arrive in pieces keyed by index."""

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None


class CompletionDelta(BaseModel):
    """One streamed chunk from the completion provider"""

    content: Optional[str] = None
    tool_calls: List[ToolCallDelta] = Field(default_factory=list)
    finish_reason: Optional[str] = None


class CompletionRequest(BaseModel):
    """Parameters for a single streamed model round"""

    messages: List[Dict[str, Any]]
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    tool_choice: Optional[Union[str, Dict[str, Any]]] = None
    max_tokens: Optional[int] = 1500
    temperature: Optional[float] = 0.5
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None


class SamplingParams(BaseModel):
    """Sampling budgets for normal and reasoning rounds"""

    temperature: float = 0.5
    max_tokens: int = 1500
    reasoning_temperature: float = 0.7
    reasoning_max_tokens: int = 2000
    frequency_penalty: Optional[float] = 0.3
    presence_penalty: Optional[float] = 0.2

    def request(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        tool_choice: Optional[Union[str, Dict[str, Any]]] = None,
        reasoning: bool = False,
    ) -> CompletionRequest:
        return CompletionRequest(
            messages=messages,
            tools=tools,
            tool_choice=tool_choice,
            max_tokens=self.reasoning_max_tokens if reasoning else self.max_tokens,
            temperature=self.reasoning_temperature if reasoning else self.temperature,
            frequency_penalty=self.frequency_penalty,
            presence_penalty=self.presence_penalty,
        )


class ToolCallAccumulator:
    """Reassembles streamed tool-call fragments into complete calls."""

    def __init__(self):
        self._calls: Dict[int, Dict[str, str]] = {}

    def add(self, delta: ToolCallDelta) -> None:
        call = self._calls.setdefault(delta.index, {"id": "", "name": "", "arguments": ""})
        if delta.id:
            call["id"] = delta.id
        if delta.name:
            call["name"] += delta.name
        if delta.arguments:
            call["arguments"] += delta.arguments

    def __len__(self) -> int:
        return len(self._calls)

    def calls(self) -> List[ToolCall]:
        result = []
        for index in sorted(self._calls):
            call = self._calls[index]
            result.append(ToolCall(id=call["id"] or f"call_{index}", name=call["name"], arguments=call["arguments"]))
        return result
