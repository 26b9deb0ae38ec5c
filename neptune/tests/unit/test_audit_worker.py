import pytest

from neptune.models.tools import ToolExecutionRecord
from neptune.workers.audit_worker import record_tool_execution, redis_settings_from_env


class RecordingStore:
    def __init__(self, ok=True):
        self.ok = ok
        self.records = []

    async def record_action(self, record):
        self.records.append(record)
        return self.ok


def make_record_json():
    record = ToolExecutionRecord(
        tenant_id="tenant-a", user_id="user-1", tool_name="create_lead", was_automatic=True, result_status="success"
    )
    return record.model_dump(mode="json")


@pytest.mark.asyncio
async def test_record_tool_execution_persists():
    store = RecordingStore()
    result = await record_tool_execution({"store": store}, make_record_json())

    assert result == {"status": "recorded", "tool_name": "create_lead"}
    assert store.records[0].tenant_id == "tenant-a"


@pytest.mark.asyncio
async def test_failed_write_raises_for_retry():
    with pytest.raises(RuntimeError):
        await record_tool_execution({"store": RecordingStore(ok=False)}, make_record_json())


def test_redis_settings_from_env(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://cache.internal:6380/2")
    settings = redis_settings_from_env()
    assert (settings.host, settings.port, settings.database) == ("cache.internal", 6380, 2)
