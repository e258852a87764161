from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB

from app.models.database import Base


def utcnow():
    return datetime.now(timezone.utc)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


# ── View Counters ──

class ViewCounter(Base):
    """One row per counted resource. ``attributions`` holds the trailing
    window of ``{"client_id": str, "timestamp": iso8601}`` entries."""

    __tablename__ = "view_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), unique=True, nullable=False, index=True)
    count = Column(Integer, default=0, nullable=False)
    attributions = Column(JSONDocument, default=list, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<ViewCounter key={self.key!r} count={self.count}>"
