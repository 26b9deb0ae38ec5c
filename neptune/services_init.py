"""Centralised initialisation of Neptune services.

Singletons that need no network connection are created at import time so
other modules can simply import them:

    from neptune.services_init import conversation_store, settings

Services that talk to Redis are assembled by :func:`build_turn_services`
once the lifespan handler has opened the arq pool.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import arq

from neptune.completion.litellm_completion import LiteLLMCompletionModel
from neptune.config import get_settings
from neptune.database.postgres_database import PostgresConversationStore
from neptune.models.completion import SamplingParams
from neptune.services.audit import ArqAuditSink
from neptune.services.autonomy_gate import AutonomyGate, RiskProfilePolicyService
from neptune.services.background import BackgroundTaskQueue
from neptune.services.rate_limiter import RateLimiter
from neptune.services.response_cache import ResponseCache
from neptune.services.telemetry import get_telemetry_service
from neptune.services.tool_executor import ToolExecutor
from neptune.services.turn_orchestrator import TurnOrchestrator
from neptune.tools import build_default_registry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Global settings
# ---------------------------------------------------------------------------

settings = get_settings()

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

if not settings.POSTGRES_URI:
    raise ValueError("PostgreSQL URI is required for PostgreSQL database")

conversation_store = PostgresConversationStore(uri=settings.POSTGRES_URI)
logger.debug("Created PostgresConversationStore singleton")

# ---------------------------------------------------------------------------
# Models, tools and policy
# ---------------------------------------------------------------------------

completion_model = LiteLLMCompletionModel(model_key=settings.COMPLETION_MODEL)
logger.info("Initialized LiteLLM completion model with model key: %s", settings.COMPLETION_MODEL)

tool_registry = build_default_registry()
logger.info("Registered tools: %s", tool_registry.names())

autonomy_gate = AutonomyGate(
    RiskProfilePolicyService(store=conversation_store, min_confidence=settings.AUTONOMY_MIN_CONFIDENCE)
)

background_queue = BackgroundTaskQueue()
telemetry = get_telemetry_service()

sampling = SamplingParams(
    temperature=settings.COMPLETION_TEMPERATURE,
    max_tokens=settings.COMPLETION_MAX_TOKENS,
    reasoning_temperature=settings.REASONING_TEMPERATURE,
    reasoning_max_tokens=settings.REASONING_MAX_TOKENS,
    frequency_penalty=settings.FREQUENCY_PENALTY,
    presence_penalty=settings.PRESENCE_PENALTY,
)


def build_turn_services(redis_pool: arq.ArqRedis) -> Dict[str, Any]:
    """Assemble the Redis-backed services and the orchestrator on top of them."""
    tool_executor = ToolExecutor(
        tool_registry,
        autonomy_gate,
        audit_sink=ArqAuditSink(redis_pool),
        background=background_queue,
    )
    response_cache = ResponseCache(
        redis_pool,
        ttl=settings.CACHE_TTL,
        min_query_length=settings.CACHE_MIN_QUERY_LENGTH,
        min_response_length=settings.CACHE_MIN_RESPONSE_LENGTH,
        max_entries_per_tenant=settings.CACHE_MAX_ENTRIES_PER_TENANT,
        enabled=settings.CACHE_ENABLED,
    )
    rate_limiter = RateLimiter(redis_pool, limit=settings.RATE_LIMIT_REQUESTS, window=settings.RATE_LIMIT_WINDOW)

    orchestrator = TurnOrchestrator(
        completion_model=completion_model,
        store=conversation_store,
        executor=tool_executor,
        registry=tool_registry,
        cache=response_cache,
        rate_limiter=rate_limiter,
        background=background_queue,
        telemetry=telemetry,
        sampling=sampling,
        max_rounds=settings.MAX_TOOL_ROUNDS,
        history_limit=settings.HISTORY_LIMIT,
        idle_timeout=settings.IDLE_TIMEOUT,
        replay_chunk_words=settings.REPLAY_CHUNK_WORDS,
        replay_delay=settings.REPLAY_DELAY,
        fallback_response=settings.FALLBACK_RESPONSE,
        learning_trigger_message_count=settings.LEARNING_TRIGGER_MESSAGE_COUNT,
    )
    logger.info("Turn orchestrator initialised")

    return {
        "tool_executor": tool_executor,
        "response_cache": response_cache,
        "rate_limiter": rate_limiter,
        "orchestrator": orchestrator,
    }


__all__ = [
    "settings",
    "conversation_store",
    "completion_model",
    "tool_registry",
    "autonomy_gate",
    "background_queue",
    "build_turn_services",
]
