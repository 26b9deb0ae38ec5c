"""Test doubles shared by the unit tests."""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from redis.exceptions import ConnectionError as RedisConnectionError

from neptune.models.completion import CompletionDelta, ToolCallDelta
from neptune.models.tools import AutonomyDecision, ToolResult
from neptune.services.event_emitter import DONE_FRAME, KEEPALIVE_FRAME
from neptune.tools.registry import ToolRegistry, ToolSpec
from neptune.tools.website_tools import ANALYZE_WEBSITE_DESCRIPTION, ANALYZE_WEBSITE_TOOL, AnalyzeWebsiteArgs


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the services use."""

    def __init__(self):
        self.values: Dict[str, Any] = {}
        self.expiries: Dict[str, int] = {}
        self.sorted_sets: Dict[str, Dict[str, float]] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def incr(self, key):
        self._check()
        self.values[key] = int(self.values.get(key, 0)) + 1
        return self.values[key]

    async def expire(self, key, seconds):
        self._check()
        self.expiries[key] = seconds
        return True

    async def ttl(self, key):
        self._check()
        return self.expiries.get(key, -1)

    async def get(self, key):
        self._check()
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.values[key] = value
        if ex is not None:
            self.expiries[key] = ex
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None or self.sorted_sets.pop(key, None) is not None:
                removed += 1
            self.expiries.pop(key, None)
        return removed

    async def zadd(self, key, mapping):
        self._check()
        self.sorted_sets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def zcard(self, key):
        self._check()
        return len(self.sorted_sets.get(key, {}))

    async def zrange(self, key, start, end):
        self._check()
        members = sorted(self.sorted_sets.get(key, {}).items(), key=lambda item: item[1])
        stop = None if end == -1 else end + 1
        return [member for member, _ in members[start:stop]]

    async def zrem(self, key, *members):
        self._check()
        zset = self.sorted_sets.get(key, {})
        return sum(1 for m in members if zset.pop(m, None) is not None)

    async def zremrangebyscore(self, key, min_score, max_score):
        self._check()
        zset = self.sorted_sets.get(key, {})
        low, high = float(min_score), float(max_score)
        doomed = [m for m, score in zset.items() if low <= score <= high]
        for member in doomed:
            del zset[member]
        return len(doomed)


class FakeCompletionModel:
    """Replays scripted rounds of deltas; the last round repeats once the script runs out."""

    def __init__(self, rounds: List[List[CompletionDelta]]):
        self.rounds = rounds
        self.requests = []

    def stream_chat(self, request):
        self.requests.append(request)
        script = self.rounds[min(len(self.requests) - 1, len(self.rounds) - 1)]

        async def generate():
            for delta in script:
                if isinstance(delta, Exception):
                    raise delta
                yield delta

        return generate()


def text_round(*chunks: str) -> List[CompletionDelta]:
    deltas = [CompletionDelta(content=chunk) for chunk in chunks]
    deltas.append(CompletionDelta(finish_reason="stop"))
    return deltas


def tool_round(*calls) -> List[CompletionDelta]:
    """Round requesting tools; each call is ``(name, arguments_json)``. Arguments arrive in two fragments."""
    deltas = []
    for index, (name, arguments) in enumerate(calls):
        half = len(arguments) // 2
        deltas.append(
            CompletionDelta(
                tool_calls=[ToolCallDelta(index=index, id=f"call_{name}_{index}", name=name, arguments=arguments[:half])]
            )
        )
        deltas.append(CompletionDelta(tool_calls=[ToolCallDelta(index=index, arguments=arguments[half:])]))
    deltas.append(CompletionDelta(finish_reason="tool_calls"))
    return deltas


class LookupArgs(BaseModel):
    query: str


class AllowAllGate:
    def __init__(self):
        self.calls = []

    async def evaluate(self, tool_name, tenant_id, actor_id):
        self.calls.append((tool_name, tenant_id, actor_id))
        return AutonomyDecision(tool_name=tool_name, auto_execute=True, confidence=1.0, reason="allowed")


def build_test_registry(website_result: Optional[ToolResult] = None) -> ToolRegistry:
    """Registry with a lookup tool and a stubbed website tool that never touches the network."""
    registry = ToolRegistry()

    @registry.register("lookup_record", "Look up a CRM record", LookupArgs, capabilities=("crm",))
    async def lookup_record(args, context):
        return ToolResult(success=True, message=f"Found {args.query}", data={"query": args.query})

    async def analyze(args, context):
        return website_result or ToolResult(
            success=True, message=f"Analyzed {args.url}", data={"websiteUrl": args.url, "companyName": "Example"}
        )

    registry.add(
        ToolSpec(
            name=ANALYZE_WEBSITE_TOOL,
            description=ANALYZE_WEBSITE_DESCRIPTION,
            args_model=AnalyzeWebsiteArgs,
            handler=analyze,
            capabilities=("research",),
        )
    )
    return registry


def parse_frames(frames: List[str]) -> List[Any]:
    """Decode SSE frames into payload dicts, keeping the sentinel as the string ``"[DONE]"``."""
    events = []
    for frame in frames:
        if frame == KEEPALIVE_FRAME:
            continue
        if frame == DONE_FRAME:
            events.append("[DONE]")
            continue
        assert frame.startswith("data: ") and frame.endswith("\n\n")
        events.append(json.loads(frame[len("data: ") : -2]))
    return events


async def collect(handle) -> List[Any]:
    return parse_frames([frame async for frame in handle.frames()])

