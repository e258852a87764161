import os
import pytest
from unittest.mock import AsyncMock

# Must be set before any app import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/0"
os.environ["ENVIRONMENT"] = "test"
os.environ["COUNTER_STORE_BACKEND"] = "sql"
os.environ["VIEW_KEY_LOCK_ENABLED"] = "false"

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from app.models.database import Base
from app.models.entities import ViewCounter


class InMemoryCounterStore:
    """Dict-backed CounterStore. Hands out fresh records on every find so
    only what was saved is observable."""

    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.creates = 0
        self.saves = 0

    def _record(self, doc: dict) -> ViewCounter:
        return ViewCounter(key=doc["key"], count=doc["count"], attributions=list(doc["attributions"]))

    async def find(self, key):
        doc = self.docs.get(key)
        return self._record(doc) if doc else None

    async def create(self, key):
        self.creates += 1
        self.docs[key] = {"key": key, "count": 0, "attributions": []}
        return self._record(self.docs[key])

    async def save(self, record):
        self.saves += 1
        self.docs[record.key] = {
            "key": record.key,
            "count": record.count,
            "attributions": list(record.attributions),
        }


@pytest.fixture
def memory_store():
    return InMemoryCounterStore()


@pytest.fixture
async def session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def mock_redis():
    """Dict-backed Redis mock covering GET / SET NX EX / DELETE / EVAL."""
    storage: dict[str, str] = {}

    redis = AsyncMock()

    async def mock_get(key):
        return storage.get(key)

    async def mock_set(key, value, **kwargs):
        if kwargs.get("nx") and key in storage:
            return None
        storage[key] = value
        return True

    async def mock_delete(*keys):
        removed = 0
        for k in keys:
            if storage.pop(k, None) is not None:
                removed += 1
        return removed

    async def mock_eval(script, numkeys, key, value):
        if storage.get(key) == value:
            del storage[key]
            return 1
        return 0

    redis.get = mock_get
    redis.set = mock_set
    redis.delete = mock_delete
    redis.eval = mock_eval
    redis.ping = AsyncMock(return_value=True)
    redis.storage = storage

    return redis
