from contextlib import nullcontext

from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_view_counter
from app.config import get_settings
from app.logging_config import get_logger
from app.models.database import get_db
from app.schemas.schemas import BadgeOut
from app.services.badge import build_badge
from app.services.view_counter import ViewCounterService
from app.utils.client_ip import resolve_client_id
from app.utils.metrics import STORE_ERRORS
from app.utils.view_lock import view_key_lock

router = APIRouter(tags=["Views"])
logger = get_logger("views")


@router.get("/view/{repo}", response_model=BadgeOut)
async def view_repo(
    request: Request,
    repo: str = Path(min_length=1, max_length=255),
    counter: ViewCounterService = Depends(get_view_counter),
    db: AsyncSession = Depends(get_db),
):
    settings = get_settings()
    client_id = resolve_client_id(request, settings.TRUST_FORWARDED_FOR)

    lock = view_key_lock(repo) if settings.VIEW_KEY_LOCK_ENABLED else nullcontext()
    try:
        async with lock:
            count = await counter.record_view(repo, client_id)
    except Exception as e:
        STORE_ERRORS.inc()
        logger.error("view_record_failed", repo=repo, client_id=client_id, error=str(e))
        await db.rollback()
        return PlainTextResponse("Server Error", status_code=500)

    return build_badge(count, label=settings.BADGE_LABEL, color=settings.BADGE_COLOR)
