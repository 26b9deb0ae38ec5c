import logging
from abc import ABC, abstractmethod

import arq

from neptune.database.base_database import BaseConversationStore
from neptune.models.tools import ToolExecutionRecord

logger = logging.getLogger(__name__)

AUDIT_JOB_NAME = "record_tool_execution"


class AuditSink(ABC):
    """Destination for tool execution bookkeeping"""

    @abstractmethod
    async def record(self, record: ToolExecutionRecord) -> None:
        pass


class DatabaseAuditSink(AuditSink):
    """Writes audit rows directly through the conversation store."""

    def __init__(self, store: BaseConversationStore):
        self.store = store

    async def record(self, record: ToolExecutionRecord) -> None:
        if not await self.store.record_action(record):
            raise RuntimeError(f"Failed to record execution of {record.tool_name}")


class ArqAuditSink(AuditSink):
    """Offloads audit writes to the arq worker."""

    def __init__(self, redis_pool: arq.ArqRedis):
        self.redis_pool = redis_pool

    async def record(self, record: ToolExecutionRecord) -> None:
        job = await self.redis_pool.enqueue_job(AUDIT_JOB_NAME, record_json=record.model_dump(mode="json"))
        logger.debug("Audit job queued (job_id=%s, tool=%s)", getattr(job, "job_id", None), record.tool_name)
