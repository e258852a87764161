from app.schemas.schemas import BadgeOut


def build_badge(count: int, label: str = "Profile View", color: str = "blue") -> BadgeOut:
    """shields.io endpoint payload for a view count."""
    return BadgeOut(schemaVersion=1, label=label, message=str(count), color=color)
