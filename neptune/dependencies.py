from typing import TYPE_CHECKING

import arq
from fastapi import Request

if TYPE_CHECKING:
    from neptune.services.turn_orchestrator import TurnOrchestrator
    from neptune.services.tool_executor import ToolExecutor
    from neptune.services.response_cache import ResponseCache
    from neptune.database.base_database import BaseConversationStore


def _from_state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise RuntimeError(f"{name} not initialized or not available on app.state")
    return value


async def get_redis_pool(request: Request) -> arq.ArqRedis:
    return _from_state(request, "redis_pool")


async def get_orchestrator(request: Request) -> "TurnOrchestrator":
    return _from_state(request, "orchestrator")


async def get_tool_executor(request: Request) -> "ToolExecutor":
    return _from_state(request, "tool_executor")


async def get_response_cache(request: Request) -> "ResponseCache":
    return _from_state(request, "response_cache")


async def get_conversation_store(request: Request) -> "BaseConversationStore":
    return _from_state(request, "conversation_store")
