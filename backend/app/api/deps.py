from datetime import timedelta

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.database import get_db
from app.services.counter_store import CounterStore, RedisCounterStore, SQLCounterStore
from app.services.view_counter import ViewCounterService
from app.utils.redis_client import get_redis


async def get_counter_store(db: AsyncSession = Depends(get_db)) -> CounterStore:
    settings = get_settings()
    if settings.COUNTER_STORE_BACKEND == "redis":
        return RedisCounterStore(await get_redis())
    return SQLCounterStore(db, for_update=settings.VIEW_ROW_LOCK)


async def get_view_counter(store: CounterStore = Depends(get_counter_store)) -> ViewCounterService:
    window = timedelta(seconds=get_settings().VIEW_DEDUPE_WINDOW_SECONDS)
    return ViewCounterService(store, window=window)
