import os
from pathlib import Path

import pytest
import pytest_asyncio

root_dir = Path(__file__).parent.parent.parent

# Settings are read lazily; point them at the sample config and an in-memory database
os.environ.setdefault("NEPTUNE_CONFIG", str(root_dir / "neptune.toml"))
os.environ.setdefault("POSTGRES_URI", "sqlite+aiosqlite://")

from neptune.database.postgres_database import PostgresConversationStore  # noqa: E402
from neptune.tests.fakes import FakeRedis  # noqa: E402


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def store():
    conversation_store = PostgresConversationStore(uri="sqlite+aiosqlite://")
    assert await conversation_store.initialize()
    try:
        yield conversation_store
    finally:
        await conversation_store.close()
