"""
Counter Store backends: keyed find / create / save of ViewCounter records.

SQLCounterStore persists through the request's AsyncSession;
RedisCounterStore keeps one JSON document per key.
"""
import orjson
from typing import Protocol

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from app.logging_config import get_logger
from app.models.entities import ViewCounter

logger = get_logger("counter_store")


class CounterStore(Protocol):
    async def find(self, key: str) -> ViewCounter | None: ...

    async def create(self, key: str) -> ViewCounter: ...

    async def save(self, record: ViewCounter) -> None: ...


class SQLCounterStore:
    """ViewCounter rows through SQLAlchemy. Every write commits."""

    def __init__(self, db: AsyncSession, *, for_update: bool = False):
        self.db = db
        self.for_update = for_update

    async def find(self, key: str) -> ViewCounter | None:
        stmt = select(ViewCounter).where(ViewCounter.key == key)
        if self.for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, key: str) -> ViewCounter:
        record = ViewCounter(key=key, count=0, attributions=[])
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost the race against a concurrent first view of the same key
            await self.db.rollback()
            existing = await self.find(key)
            if existing is None:
                raise
            logger.info("view_counter_create_race", key=key)
            return existing
        logger.info("view_counter_created", key=key)
        if self.for_update:
            # Re-read under FOR UPDATE so a first view is serialized like later ones
            return await self.find(key)
        return record

    async def save(self, record: ViewCounter) -> None:
        flag_modified(record, "attributions")
        await self.db.commit()


class RedisCounterStore:
    """ViewCounter documents as JSON strings under ``viewcount:{key}``."""

    PREFIX = "viewcount:"

    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, key: str) -> str:
        return f"{self.PREFIX}{key}"

    @staticmethod
    def _dump(record: ViewCounter) -> str:
        return orjson.dumps({
            "key": record.key,
            "count": record.count,
            "attributions": list(record.attributions or []),
        }).decode()

    @staticmethod
    def _load(raw: str) -> ViewCounter:
        doc = orjson.loads(raw)
        return ViewCounter(
            key=doc["key"],
            count=int(doc.get("count", 0)),
            attributions=list(doc.get("attributions") or []),
        )

    async def find(self, key: str) -> ViewCounter | None:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return None
        return self._load(raw)

    async def create(self, key: str) -> ViewCounter:
        record = ViewCounter(key=key, count=0, attributions=[])
        created = await self.redis.set(self._key(key), self._dump(record), nx=True)
        if not created:
            existing = await self.find(key)
            if existing is not None:
                logger.info("view_counter_create_race", key=key)
                return existing
        logger.info("view_counter_created", key=key)
        return record

    async def save(self, record: ViewCounter) -> None:
        await self.redis.set(self._key(record.key), self._dump(record))
