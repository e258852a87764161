"""
Per-counter Redis lock around one read-decide-write cycle of record_view.

Two requests for the same repository take turns; different repositories never
contend. The lock expires on its own after VIEW_KEY_LOCK_TTL_SECONDS so a
crashed worker cannot wedge a counter.
"""
import asyncio
import uuid
from contextlib import asynccontextmanager

from app.config import get_settings
from app.logging_config import get_logger
from app.utils.redis_client import get_redis

logger = get_logger("view_lock")

VIEW_LOCK_PREFIX = "lock:view:"

# Delete only while the token is still ours
_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    def __init__(self, key: str):
        super().__init__(f"view counter '{key}' is busy")
        self.key = key


def view_lock_name(key: str) -> str:
    return f"{VIEW_LOCK_PREFIX}{key}"


@asynccontextmanager
async def view_key_lock(
    key: str,
    ttl_seconds: int | None = None,
    wait_seconds: float | None = None,
    poll_interval: float = 0.05,
):
    """
    Hold the lock for counter ``key`` while the body runs.

    Polls until ``wait_seconds`` (default VIEW_KEY_LOCK_WAIT_SECONDS) has
    passed, then raises LockNotAcquired.
    """
    settings = get_settings()
    ttl = ttl_seconds or settings.VIEW_KEY_LOCK_TTL_SECONDS
    wait = settings.VIEW_KEY_LOCK_WAIT_SECONDS if wait_seconds is None else wait_seconds

    redis = await get_redis()
    name = view_lock_name(key)
    token = uuid.uuid4().hex

    loop = asyncio.get_running_loop()
    deadline = loop.time() + wait
    while not await redis.set(name, token, nx=True, ex=ttl):
        if loop.time() >= deadline:
            logger.warning("view_lock_timeout", key=key, wait_seconds=wait)
            raise LockNotAcquired(key)
        await asyncio.sleep(poll_interval)

    try:
        yield
    finally:
        released = await redis.eval(_RELEASE_SCRIPT, 1, name, token)
        if not released:
            logger.warning("view_lock_expired", key=key, ttl_seconds=ttl)
