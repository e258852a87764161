from pydantic import BaseModel, ConfigDict
from typing import Literal


# ── Badge ──

class BadgeOut(BaseModel):
    """shields.io "endpoint" badge schema."""
    model_config = ConfigDict(frozen=True)

    schemaVersion: Literal[1] = 1
    label: str
    message: str
    color: str


# ── Health ──

class HealthOut(BaseModel):
    status: str
    version: str
    checks: dict[str, str]
