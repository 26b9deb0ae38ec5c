import logging
import os
import urllib.parse as up
from typing import Any, Dict

from arq.connections import RedisSettings

from neptune.config import get_settings
from neptune.database.postgres_database import PostgresConversationStore
from neptune.models.tools import ToolExecutionRecord

logger = logging.getLogger(__name__)


async def record_tool_execution(ctx: Dict[str, Any], record_json: Dict[str, Any]) -> Dict[str, Any]:
    """
    Persist one tool execution record queued by the API process.

    Args:
        ctx: The ARQ context dictionary holding the conversation store
        record_json: ToolExecutionRecord serialized in JSON mode

    Returns:
        A dictionary with the job status
    """
    record = ToolExecutionRecord.model_validate(record_json)
    store = ctx["store"]

    if not await store.record_action(record):
        # Raising lets arq retry the job
        raise RuntimeError(f"Failed to record execution of {record.tool_name}")

    logger.info(
        f"Recorded {record.tool_name} for tenant {record.tenant_id} "
        f"(status={record.result_status}, automatic={record.was_automatic})"
    )
    return {"status": "recorded", "tool_name": record.tool_name}


async def startup(ctx):
    """Worker startup: open the conversation store reused across jobs."""
    logger.info("Audit worker starting up...")
    settings = get_settings()
    store = PostgresConversationStore(uri=settings.POSTGRES_URI)
    if await store.initialize():
        logger.info("Database initialization successful")
    else:
        logger.error("Database initialization failed")
    ctx["store"] = store


async def shutdown(ctx):
    logger.info("Audit worker shutting down...")
    if "store" in ctx:
        await ctx["store"].close()


def redis_settings_from_env() -> RedisSettings:
    """
    Create RedisSettings for the ARQ worker from ``REDIS_URL``.

    Returns:
        RedisSettings configured with connection retries
    """
    url = up.urlparse(os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0"))
    return RedisSettings(
        host=url.hostname or "127.0.0.1",
        port=url.port or 6379,
        database=int(url.path.lstrip("/") or 0),
        conn_timeout=5,
        conn_retries=15,
        conn_retry_delay=1,
    )


class WorkerSettings:
    """
    ARQ Worker settings for the audit worker.
    """

    functions = [record_tool_execution]
    on_startup = startup
    on_shutdown = shutdown

    redis_settings = redis_settings_from_env()

    keep_result_ms = 60 * 60 * 1000
    max_jobs = 10
    job_timeout = 60
    max_tries = 3
