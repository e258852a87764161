"""
View attribution: decides whether a view is new or a repeat inside the dedupe
window, updates the counter record and prunes stale attributions.
"""
from datetime import datetime, timedelta, timezone

from app.logging_config import get_logger
from app.models.entities import ViewCounter
from app.services.counter_store import CounterStore
from app.utils.metrics import VIEW_EVENTS

logger = get_logger("view_counter")

DEFAULT_WINDOW = timedelta(hours=1)


def _as_datetime(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def find_recent_attribution(
    attributions: list[dict], client_id: str, window_start: datetime
) -> dict | None:
    """First entry for ``client_id`` strictly newer than ``window_start``."""
    for entry in attributions:
        if entry["client_id"] == client_id and _as_datetime(entry["timestamp"]) > window_start:
            return entry
    return None


def prune_attributions(attributions: list[dict], window_start: datetime) -> list[dict]:
    return [e for e in attributions if _as_datetime(e["timestamp"]) > window_start]


class ViewCounterService:
    """Read-decide-write cycle for one view event against a CounterStore."""

    def __init__(self, store: CounterStore, window: timedelta = DEFAULT_WINDOW):
        self.store = store
        self.window = window

    async def get_or_create(self, key: str) -> ViewCounter:
        record = await self.store.find(key)
        if record is None:
            record = await self.store.create(key)
        return record

    async def record_view(self, key: str, client_id: str, now: datetime | None = None) -> int:
        """Register a view of ``key`` by ``client_id`` and return the count to report.

        A client seen for the same key within the window is a repeat: the
        count is left alone and no attribution is appended. Stale entries
        are pruned on every call, repeat or not.
        """
        now = _as_datetime(now) if now is not None else datetime.now(timezone.utc)
        record = await self.get_or_create(key)

        window_start = now - self.window
        attributions = list(record.attributions or [])

        if find_recent_attribution(attributions, client_id, window_start) is not None:
            VIEW_EVENTS.labels(outcome="repeat").inc()
            logger.debug("view_repeat", key=key, count=record.count)
        else:
            record.count = (record.count or 0) + 1
            attributions.append({"client_id": client_id, "timestamp": now.isoformat()})
            VIEW_EVENTS.labels(outcome="new").inc()
            logger.info("view_counted", key=key, count=record.count)

        record.attributions = prune_attributions(attributions, window_start)
        await self.store.save(record)
        return record.count
